import os

# Must run before bracket_service.config is imported anywhere: keep the app's
# own engine in memory so the startup hook never writes a database file
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Force SQLModel table registration at test discovery time
from bracket_service.models import Match, PlayingField, Team, Tournament  # noqa: E402, F401
