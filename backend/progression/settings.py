"""
Engine settings read from the environment (.env supported).

Only scheduling offsets live here; database settings are in database.py.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


# Days between consecutive league/group fixtures (fixture index * spacing)
FIXTURE_SPACING_DAYS = _int_env("PROGRESSION_FIXTURE_SPACING_DAYS", 1)

# Days between the two legs of a home/away knockout tie (never below 3)
RETURN_LEG_GAP_DAYS = max(3, _int_env("PROGRESSION_RETURN_LEG_GAP_DAYS", 3))

# Days from the triggering result to the first fixture of a generated knockout round
KNOCKOUT_LEAD_DAYS = _int_env("PROGRESSION_KNOCKOUT_LEAD_DAYS", 1)

# Hours between kick-offs of fixtures within one knockout round
KNOCKOUT_SLOT_HOURS = _int_env("PROGRESSION_KNOCKOUT_SLOT_HOURS", 2)
