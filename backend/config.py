"""
Application configuration.

Values come from environment variables; a .env file in the working
directory is loaded first so local setups do not need to export anything.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
# This must happen before any of the os.getenv calls below
load_dotenv()


def _flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() == 'true'


# Storage backend: DynamoDB when enabled, local JSON Lines files otherwise
USE_DYNAMODB = _flag('USE_DYNAMODB')
DYNAMODB_TABLE_NAME = os.getenv('DYNAMODB_TABLE_NAME', 'MeterTracker')
AWS_REGION = os.getenv('AWS_REGION', 'us-east-1')
DATA_DIR = Path(os.getenv('DATA_DIR', 'backend/data'))

# Default number of days shown by the projection endpoint
PROJECTION_DAYS = int(os.getenv('PROJECTION_DAYS', '30'))

LOG_LEVEL = (os.getenv('LOG_LEVEL') or 'INFO').strip().upper()
LOG_JSON = _flag('LOG_JSON')


def aws_credentials() -> dict:
    """
    Keyword arguments for boto3.resource / boto3.client.

    Missing values are passed as None so boto3 falls back to its own
    credential chain (profiles, instance roles, ...).
    """
    session_token = os.getenv('AWS_SESSION_TOKEN')
    return {
        'region_name': AWS_REGION,
        'aws_access_key_id': os.getenv('AWS_ACCESS_KEY_ID'),
        'aws_secret_access_key': os.getenv('AWS_SECRET_ACCESS_KEY'),
        'aws_session_token': session_token if session_token else None,
    }
