"""
Internationalization (i18n) module for the eventsync system.

Provides German (de) and English (en) texts for connection status
notifications and for the per-action feedback shown when a queued action
is rejected or cannot be delivered.
"""

from typing import Optional


SUPPORTED_LANGUAGES = frozenset({"de", "en"})
DEFAULT_LANGUAGE = "en"


# Structure: {message_key: {language_code: translated_message}}
TRANSLATIONS: dict[str, dict[str, str]] = {
    # Connection status
    "status.connecting": {
        "de": "Verbindung wird aufgebaut",
        "en": "Connecting",
    },
    "status.connected": {
        "de": "Verbunden",
        "en": "Connected",
    },
    "status.disconnected": {
        "de": "Getrennt",
        "en": "Disconnected",
    },
    "status.reconnecting": {
        "de": "Verbindung wird wiederhergestellt (Versuch {attempt} von {max_attempts})",
        "en": "Reconnecting (attempt {attempt} of {max_attempts})",
    },
    "reason.auth_missing": {
        "de": "Kein Anmeldetoken vorhanden",
        "en": "No authentication token available",
    },
    "reason.auth_rejected": {
        "de": "Anmeldung fehlgeschlagen",
        "en": "Authentication failed",
    },
    "reason.transport_unavailable": {
        "de": "Netzwerkfehler",
        "en": "Network error",
    },
    "reason.heartbeat_timeout": {
        "de": "Server antwortet nicht mehr",
        "en": "Server stopped responding",
    },
    "reason.server_close": {
        "de": "Verbindung vom Server beendet",
        "en": "Server closed the connection",
    },
    "reason.max_attempts": {
        "de": "Maximale Anzahl an Verbindungsversuchen erreicht",
        "en": "Maximum reconnection attempts reached",
    },
    "reason.client_disconnect": {
        "de": "Verbindung getrennt",
        "en": "Client disconnect",
    },

    # Queue feedback
    "queue.queued": {
        "de": "Offline gespeichert, wird bei Verbindung gesendet",
        "en": "Saved offline, will be sent when the connection is back",
    },
    "queue.expired": {
        "de": "Aktion nach {attempts} Versuchen verworfen",
        "en": "Action discarded after {attempts} attempts",
    },

    # Action rejection codes
    "action.INVALID_QR.title": {
        "de": "Ungültiger QR-Code",
        "en": "Invalid QR Code",
    },
    "action.INVALID_QR.message": {
        "de": "Der gescannte QR-Code ist ungültig.",
        "en": "The scanned QR code is not valid.",
    },
    "action.TICKET_NOT_FOUND.title": {
        "de": "Ticket nicht gefunden",
        "en": "Ticket Not Found",
    },
    "action.TICKET_NOT_FOUND.message": {
        "de": "Dieses Ticket existiert nicht im System.",
        "en": "This ticket could not be found in the system.",
    },
    "action.TICKET_NOT_ACTIVE.title": {
        "de": "Ticket nicht aktiv",
        "en": "Ticket Not Active",
    },
    "action.TICKET_NOT_ACTIVE.message": {
        "de": "Dieses Ticket ist nicht aktiv und berechtigt nicht zum Einlass.",
        "en": "This ticket is not active and cannot be used for entry.",
    },
    "action.ALREADY_USED.title": {
        "de": "Ticket bereits verwendet",
        "en": "Ticket Already Used",
    },
    "action.ALREADY_USED.message": {
        "de": "Dieses Ticket wurde bereits gescannt.",
        "en": "This ticket has already been scanned and used.",
    },
    "action.QR_EXPIRED.title": {
        "de": "QR-Code abgelaufen",
        "en": "QR Code Expired",
    },
    "action.QR_EXPIRED.message": {
        "de": "Dieser QR-Code ist abgelaufen.",
        "en": "This QR code has expired and is no longer valid.",
    },
    "action.EVENT_NOT_STARTED.title": {
        "de": "Veranstaltung noch nicht begonnen",
        "en": "Event Not Started",
    },
    "action.EVENT_NOT_STARTED.message": {
        "de": "Scannen ist erst ab Veranstaltungsbeginn möglich.",
        "en": "This event has not started yet. Scanning is not available.",
    },
    "action.EVENT_ENDED.title": {
        "de": "Veranstaltung beendet",
        "en": "Event Ended",
    },
    "action.EVENT_ENDED.message": {
        "de": "Diese Veranstaltung ist beendet.",
        "en": "This event has ended. Scanning is no longer available.",
    },
    "action.ACCESS_DENIED.title": {
        "de": "Zugriff verweigert",
        "en": "Access Denied",
    },
    "action.ACCESS_DENIED.message": {
        "de": "Keine Berechtigung, Tickets für diese Veranstaltung zu scannen.",
        "en": "You do not have permission to scan tickets for this event.",
    },
    "action.RATE_LIMITED.title": {
        "de": "Zu viele Anfragen",
        "en": "Too Many Requests",
    },
    "action.RATE_LIMITED.message": {
        "de": "Bitte kurz warten, bevor erneut gescannt wird.",
        "en": "You are scanning too quickly. Please wait a moment.",
    },
    "action.NETWORK_ERROR.title": {
        "de": "Netzwerkfehler",
        "en": "Network Error",
    },
    "action.NETWORK_ERROR.message": {
        "de": "Server nicht erreichbar. Der Scan wird später gesendet.",
        "en": "Unable to reach the server. The scan will be sent later.",
    },
    "action.SERVER_ERROR.title": {
        "de": "Serverfehler",
        "en": "Server Error",
    },
    "action.SERVER_ERROR.message": {
        "de": "Auf dem Server ist ein Fehler aufgetreten.",
        "en": "An error occurred on the server. Please try again later.",
    },
    "action.UNKNOWN_ERROR.title": {
        "de": "Scan fehlgeschlagen",
        "en": "Scan Failed",
    },
    "action.UNKNOWN_ERROR.message": {
        "de": "Beim Verarbeiten ist ein unerwarteter Fehler aufgetreten.",
        "en": "An unexpected error occurred while processing the scan.",
    },
}


def get_message(
    key: str,
    language: Optional[str] = None,
    **kwargs,
) -> str:
    """
    Get a translated message by key.

    Args:
        key: The message key (e.g., 'status.connected')
        language: Language code ('de' or 'en'). Defaults to DEFAULT_LANGUAGE.
        **kwargs: Format arguments for the message template

    Returns:
        The translated and formatted message string.
        If the key is not found, returns the key itself.
        If the language is not found, falls back to DEFAULT_LANGUAGE.

    Examples:
        >>> get_message('status.connected', 'en')
        'Connected'
        >>> get_message('queue.expired', 'de', attempts=3)
        'Aktion nach 3 Versuchen verworfen'
    """
    if language is None or language not in SUPPORTED_LANGUAGES:
        language = DEFAULT_LANGUAGE

    translations = TRANSLATIONS.get(key)
    if translations is None:
        return key

    message = translations.get(language) or translations.get(DEFAULT_LANGUAGE)
    if message is None:
        return key

    if kwargs:
        try:
            message = message.format(**kwargs)
        except KeyError:
            pass

    return message


def describe_action_error(code: Optional[str], language: Optional[str] = None) -> tuple[str, str]:
    """
    Title and message for an action error code.

    Unknown codes are described as UNKNOWN_ERROR.
    """
    normalized = (code or "UNKNOWN_ERROR").upper()
    if f"action.{normalized}.title" not in TRANSLATIONS:
        normalized = "UNKNOWN_ERROR"
    return (
        get_message(f"action.{normalized}.title", language),
        get_message(f"action.{normalized}.message", language),
    )


def get_all_message_keys() -> set[str]:
    """Get all available message keys."""
    return set(TRANSLATIONS.keys())


def get_missing_translations(language: str) -> set[str]:
    """Get all message keys that are missing translations for a language."""
    return {key for key, translations in TRANSLATIONS.items() if language not in translations}


def validate_translations() -> dict[str, set[str]]:
    """
    Validate that all languages have all translations.

    Returns:
        Dictionary mapping language codes to sets of missing message keys.
        Empty sets indicate complete translations.
    """
    return {language: get_missing_translations(language) for language in SUPPORTED_LANGUAGES}
