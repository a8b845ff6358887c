"""
Profile Store

Read-only access to full candidate profiles. The profile service owns
the data; this engine only needs to fetch one profile to stage it.
"""
import json
import logging
import re
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..models.profiles import CandidateProfile, parse_profile

logger = logging.getLogger(__name__)

SAFE_ID = re.compile(r"^[A-Za-z0-9_\-]+$")


class ProfileStore:
    def get(self, candidate_id: str) -> Optional[CandidateProfile]:
        raise NotImplementedError


class InMemoryProfileStore(ProfileStore):
    def __init__(self, profiles: Optional[Dict[str, CandidateProfile]] = None):
        self.profiles = dict(profiles or {})

    def put(self, profile: CandidateProfile) -> None:
        self.profiles[profile.candidate_id] = profile

    def get(self, candidate_id: str) -> Optional[CandidateProfile]:
        return self.profiles.get(candidate_id)


class JsonProfileStore(ProfileStore):
    """Profiles exported by the profile service as <candidate_id>.json."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def get(self, candidate_id: str) -> Optional[CandidateProfile]:
        if not SAFE_ID.match(candidate_id):
            raise ValidationError(f"Invalid candidate id: {candidate_id!r}")
        path = self.directory / f"{candidate_id}.json"
        if not path.exists():
            return None

        with open(path, encoding="utf-8") as f:
            payload = json.load(f)
        try:
            profile = parse_profile(payload)
        except PydanticValidationError as e:
            logger.error(f"Profile {path} failed validation: {e}")
            raise ValidationError(f"Stored profile for {candidate_id} is invalid")
        if not isinstance(profile, CandidateProfile):
            raise ValidationError(f"Profile {candidate_id} is not a candidate profile")
        return profile
