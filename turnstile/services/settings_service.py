from sqlalchemy.orm import Session

from turnstile.core.config import settings
from turnstile.models.setting import Setting

EVENT_KEYS = {"name": "EVENT_NAME", "date": "EVENT_DATE", "location": "EVENT_LOCATION"}


def get_event_info(db: Session) -> dict:
    """Event name/date/location: settings table first, then environment defaults."""
    out = {}
    for field, key in EVENT_KEYS.items():
        s = db.get(Setting, key)
        out[field] = s.str_value if s and s.str_value else getattr(settings, key)
    return out


def set_event_info(db: Session, name: str, date: str, location: str) -> dict:
    values = {"EVENT_NAME": name, "EVENT_DATE": date, "EVENT_LOCATION": location}
    for key, value in values.items():
        s = db.get(Setting, key)
        if not s:
            db.add(Setting(key=key, int_value=None, str_value=value))
        else:
            s.str_value = value
    db.commit()
    return get_event_info(db)
