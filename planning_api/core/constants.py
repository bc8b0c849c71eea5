# planning_api/core/constants.py

# --- Portal Endpoints ---
PORTAL_BASE_URL = "https://scolarite.supmeca.fr"
# Login page of the Aurion portal (JSF application, server-rendered + partial AJAX updates)
PORTAL_LOGIN_URL = f"{PORTAL_BASE_URL}/faces/Login.xhtml"
# Marker found in the URL while the browser is still on the login page
LOGIN_PAGE_URL_MARKER = "login"

# --- Browser Settings ---
BROWSER_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]
# French locale so the portal renders room numbers in event titles
BROWSER_EXTRA_HEADERS = {"Accept-Language": "fr-FR,fr;q=0.9"}
BROWSER_VIEWPORT = {"width": 1920, "height": 1080}

# --- Login Form Selectors ---
USERNAME_SELECTOR = "#username"
PASSWORD_SELECTOR = "#password"
LOGIN_ERROR_SELECTOR = ".ui-messages-error, .error-message, .alert-danger, #message-erreur"

# --- Menu Navigation ---
MENU_LABEL_SELECTOR = "li > a > span"
MENU_LINK_SELECTOR = "a"
# Lower-case terms identifying the schedule entry in the portal menu
SCHEDULE_MENU_TERMS = ("planning", "emploi du temps")

# --- Calendar Widget (FullCalendar) Selectors ---
CALENDAR_CONTAINER_SELECTOR = '.fc, [class*="fullcalendar"], #calendar, .schedule-calendar'
MONTH_VIEW_BUTTON_SELECTOR = '.fc-right > button.fc-month-button, .fc-month-button, button[title="mois"], button[title="Mois"]'
NEXT_BUTTON_SELECTOR = '.fc-next-button, .fc-right > .fc-button-group > button:last-child, button[title="suivant"], button[title="Suivant"]'
PREV_BUTTON_SELECTOR = '.fc-prev-button, .fc-left > .fc-button-group > button:first-child, button[title="précédent"], button[title="Précédent"]'
# Buttons used by the navigate endpoint, keyed by direction
DIRECTION_SELECTORS = {
    "next": ".fc-next-button",
    "prev": ".fc-prev-button",
    "today": ".fc-today-button",
}
DOM_EVENT_SELECTOR = '.fc-event, .fc-day-grid-event, .fc-time-grid-event, [class*="event"]'
DOM_EVENT_TITLE_SELECTOR = ".fc-title, .fc-list-item-title, .event-title"
DOM_EVENT_TIME_SELECTOR = ".fc-time, .fc-list-item-time, .event-time"

# --- Timeouts & Delays ---
NAVIGATION_TIMEOUT_MS = 30000
MENU_WAIT_TIMEOUT_MS = 15000
# Fixed wait for client-side calendar rendering after menu navigation.
# Heuristic: may under- or over-wait depending on portal load.
SCHEDULE_SETTLE_SECONDS = 5.0
MONTH_VIEW_SETTLE_SECONDS = 3.0
RESPONSE_INTERCEPT_TIMEOUT_SECONDS = 15.0
# Pause between "next" and "previous" clicks used to provoke a partial response
TRIGGER_PAUSE_SECONDS = 2.0

# --- Sessions ---
SESSION_IDLE_TIMEOUT_SECONDS = 30 * 60
SESSION_SWEEP_INTERVAL_SECONDS = 5 * 60
# 16 random bytes -> 32 lowercase hex characters
SESSION_TOKEN_BYTES = 16

# --- Caching ---
CACHE_MAX_AGE_HOURS = 2
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./planning_data.db"

# --- Parsing ---
UNTITLED_COURSE = "Sans titre"

# --- User-facing Messages (part of the HTTP contract) ---
MSG_CREDENTIALS_REQUIRED = "Identifiant et mot de passe requis"
MSG_INVALID_CREDENTIALS = "Identifiants incorrects. Vérifiez votre login et mot de passe."
MSG_MENU_NOT_FOUND = 'Impossible de trouver le menu "Mon Planning". Menus disponibles: '
MSG_SESSION_EXPIRED = "Session expirée. Veuillez vous reconnecter."
MSG_LOGIN_ERROR_PREFIX = "Erreur lors de la connexion: "
MSG_LOGGED_OUT = "Déconnecté"
MSG_USERNAME_REQUIRED = "Username requis"
