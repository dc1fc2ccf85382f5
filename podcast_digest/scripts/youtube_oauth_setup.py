from __future__ import annotations

import argparse
import shutil
from importlib import import_module
from pathlib import Path
from typing import Any

from podcast_digest.config import load_settings
from podcast_digest.services.transcript_sources import (
    YOUTUBE_CAPTIONS_SCOPE,
    TranscriptSourceError,
    YouTubeCaptionsApiSource,
)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Authorize the YouTube captions transcript source.",
    )
    parser.add_argument(
        "--client-secret",
        type=Path,
        default=None,
        help="Path to downloaded Google OAuth client secret JSON.",
    )
    parser.add_argument(
        "--video-id",
        type=str,
        default=None,
        help="Optional video id to fetch a caption transcript for as a check.",
    )
    return parser.parse_args()


def copy_client_secret_if_needed(source_path: Path, destination_path: Path) -> None:
    source = source_path.expanduser().resolve()
    if not source.is_file():
        raise TranscriptSourceError(f"Client secret file does not exist: {source}")

    destination = destination_path.expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    if source != destination:
        shutil.copy2(source, destination)


def authorize(*, client_secret_path: Path, token_path: Path) -> Path:
    """Run the installed-app consent flow and store the token for the captions source."""
    if not client_secret_path.is_file():
        raise TranscriptSourceError(f"Missing OAuth client secret JSON: {client_secret_path}")

    flow_cls: Any = import_module("google_auth_oauthlib.flow").InstalledAppFlow
    flow = flow_cls.from_client_secrets_file(str(client_secret_path), YOUTUBE_CAPTIONS_SCOPE)
    credentials = flow.run_local_server(port=0)
    if credentials is None:
        raise TranscriptSourceError("OAuth flow did not return credentials")

    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(str(credentials.to_json()), encoding="utf-8")
    return token_path


def main() -> None:
    args = _parse_args()
    settings = load_settings(validate_secrets=False)
    secret_path = settings.youtube_oauth_client_secret_path
    token_path = settings.youtube_oauth_token_path

    if args.client_secret is not None:
        copy_client_secret_if_needed(args.client_secret, secret_path)
        print(f"Client secret ready at: {secret_path}")
    else:
        print(f"Expecting client secret at: {secret_path}")

    authorize(client_secret_path=secret_path, token_path=token_path)
    print(f"OAuth success. Token path: {token_path}")

    if args.video_id:
        source = YouTubeCaptionsApiSource(token_path=token_path, client_secret_path=secret_path)
        result = source.get_transcript(args.video_id)
        if result is None:
            print(f"No English caption track for {args.video_id}.")
        else:
            print(f"Fetched {len(result.text)} transcript characters for {args.video_id}.")


if __name__ == "__main__":
    main()
