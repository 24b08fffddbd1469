# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from progression.models.match import Match  # noqa: F401
from progression.models.match_event import MatchEvent  # noqa: F401
from progression.models.registration import TeamRegistration  # noqa: F401
from progression.models.team import Team  # noqa: F401
from progression.models.tournament import Tournament  # noqa: F401
