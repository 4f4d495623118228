"""TartanTrips Services Package"""

from tartantrips.services.auth_service import AuthService
from tartantrips.services.profile_service import ProfileService
from tartantrips.services.trip_store import TripStore
from tartantrips.services.match_ledger import MatchLedger
from tartantrips.services.status_service import StatusService
from tartantrips.services.match_service import MatchService
from tartantrips.services.candidate_service import CandidateService
from tartantrips.services.email_service import EmailService
from tartantrips.services.notification_service import MatchNotifier
from tartantrips.services.trip_service import TripService

__all__ = [
    "AuthService",
    "ProfileService",
    "TripStore",
    "MatchLedger",
    "StatusService",
    "MatchService",
    "CandidateService",
    "EmailService",
    "MatchNotifier",
    "TripService",
]
