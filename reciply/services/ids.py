# reciply/services/ids.py
import secrets
import string

JOB_ID_ALPHABET = string.ascii_letters + string.digits + "_-"
JOB_ID_LENGTH = 10


def new_job_id(length: int = JOB_ID_LENGTH) -> str:
    """Short URL-safe id handed to clients for polling."""
    return "".join(secrets.choice(JOB_ID_ALPHABET) for _ in range(length))
