import hashlib
import base64
import uuid


def new_id() -> str:
    """Document ids are plain UUID4 strings stored in _id"""
    return str(uuid.uuid4())


def generate_club_key(club_id: str, club_name: str) -> str:
    """Generate a short default club key when an admin does not choose one"""
    combined = f"{club_id}-{club_name}"
    hash_object = hashlib.sha256(combined.encode())
    hash_bytes = hash_object.digest()
    short_code = base64.urlsafe_b64encode(hash_bytes[:6]).decode('utf-8').rstrip('=')
    return short_code.upper()


def pending_request_key(student_id: str, club_id: str) -> str:
    """Value of the unique sparse pendingKey field while a request is pending"""
    return f"{student_id}:{club_id}"
