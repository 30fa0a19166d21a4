#!/usr/bin/env python3
"""
Test Data Generation Script for ReelStage.

Seeds the ``videos`` collection with empty video records for local
development and prints a bearer token for their owner, so an upload can be
tried end to end with curl:

    curl -H "Authorization: Bearer $TOKEN" \\
         -F "video=@clip.mp4;type=video/mp4" \\
         http://localhost:8091/api/v1/videos/$VIDEO_ID/upload

Usage:
    python scripts/create_test_data.py [options]

Options:
    --count INT     Number of video records to create (default: 3)
    --user-id UUID  Owner of the records (default: a new random UUID)
    --clean         Delete the owner's existing records first
    --verbose       Display detailed operation logs

Configuration (MongoDB URI, database, secret key) is read from the same
environment variables and ``.env`` file as the API.
"""

import argparse
import sys
import time
import uuid

from datetime import UTC, datetime

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from app.config import Settings, get_settings
from app.core.auth import create_access_token
from app.core.database import VIDEOS_COLLECTION
from app.models.video import Video


CONNECTION_TIMEOUT_MS = 5000

SAMPLE_TITLES = [
    "Boots on the ground",
    "Harbour at dawn",
    "Vertical cooking short",
    "Conference keynote",
    "Drone flyover",
]


class TestDataGenerator:
    """Creates video records for one owner."""

    def __init__(self, settings: Settings, verbose: bool = False):
        self.settings = settings
        self.verbose = verbose
        self.client: MongoClient | None = None
        self.db: Database | None = None

    def log(self, message: str, level: str = "INFO") -> None:
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        if level == "DEBUG" and not self.verbose:
            return
        print(f"[{timestamp}] [{level}] {message}")

    def connect(self) -> bool:
        """
        Connect to MongoDB with retry and exponential backoff.

        Returns:
            True if connection successful, False otherwise.
        """
        max_retries = 3
        retry_delay = 2

        for attempt in range(max_retries):
            try:
                self.client = MongoClient(
                    self.settings.mongodb_uri,
                    serverSelectionTimeoutMS=CONNECTION_TIMEOUT_MS,
                    connectTimeoutMS=CONNECTION_TIMEOUT_MS,
                    uuidRepresentation="standard",
                )
                self.client.admin.command("ping")
                self.db = self.client[self.settings.mongodb_db_name]
                self.log(f"Connected to MongoDB database: {self.settings.mongodb_db_name}")
                return True

            except ServerSelectionTimeoutError as e:
                self.log(f"Server selection timeout: {e}", "ERROR")
                self.log("Ensure MongoDB is running and accessible at the configured URI.", "ERROR")
                return False

            except ConnectionFailure as e:
                self.log(f"Connection attempt {attempt + 1}/{max_retries} failed: {e}", "WARNING")
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)
                    retry_delay *= 2

        self.log("Failed to connect after all retry attempts", "ERROR")
        return False

    def clean(self, user_id: str) -> int:
        """Delete the owner's existing records; returns how many were removed."""
        result = self.db[VIDEOS_COLLECTION].delete_many({"user_id": user_id})
        self.log(f"Deleted {result.deleted_count} existing videos for {user_id}")
        return result.deleted_count

    def generate_videos(self, user_id: str, count: int) -> list[Video]:
        """Insert ``count`` records with no uploaded file."""
        videos = [
            Video(
                user_id=user_id,
                title=SAMPLE_TITLES[i % len(SAMPLE_TITLES)],
                description=f"Seeded test video {i + 1}",
            )
            for i in range(count)
        ]
        self.db[VIDEOS_COLLECTION].insert_many([video.to_document() for video in videos])
        for video in videos:
            self.log(f"Created video {video.id} ({video.title})", "DEBUG")
        return videos

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Seed video records for ReelStage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python scripts/create_test_data.py                  # Three videos for a new user
    python scripts/create_test_data.py --count 10       # Ten videos
    python scripts/create_test_data.py --user-id UUID --clean
        """,
    )
    parser.add_argument("--count", type=int, default=3, help="Number of videos (default: 3)")
    parser.add_argument("--user-id", type=uuid.UUID, default=None, help="Owner UUID")
    parser.add_argument(
        "--clean", action="store_true", help="Delete the owner's existing videos first"
    )
    parser.add_argument("--verbose", action="store_true", help="Display detailed operation logs")
    return parser.parse_args()


def main() -> int:
    args = parse_arguments()
    settings = get_settings()
    user_id = str(args.user_id or uuid.uuid4())

    generator = TestDataGenerator(settings, verbose=args.verbose)

    try:
        if not generator.connect():
            return 1

        if args.clean:
            generator.clean(user_id)

        videos = generator.generate_videos(user_id, args.count)
        token = create_access_token(user_id, settings)

        print("\n" + "=" * 60)
        print(f"Owner:  {user_id}")
        print(f"Token:  {token}")
        print("Videos:")
        for video in videos:
            print(f"  {video.id}  {video.title}")
        print("=" * 60 + "\n")
        return 0

    except KeyboardInterrupt:
        generator.log("Operation cancelled by user", "WARNING")
        return 130

    except PyMongoError as e:
        generator.log(f"Database error: {e}", "ERROR")
        return 1

    finally:
        generator.close()


if __name__ == "__main__":
    sys.exit(main())
