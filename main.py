"""Run the matching API with uvicorn."""
import argparse

import uvicorn

from phenomatch.config import settings


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"Run the {settings.app_name}")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", default=settings.debug, help="Auto-reload on code changes")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)

    print(f"Starting {settings.app_name} v{settings.version} ({settings.environment.value})")
    print(f"Database: {settings.db.url.split('@')[-1] if '@' in settings.db.url else settings.db.url}")
    print(f"Landmark service: {settings.landmarks.service_url}")
    print(f"Embedding service: {settings.embeddings.service_url}")
    print(f"Vision classifier: {settings.vision.api_url or 'disabled'}")
    print(
        f"Fusion weights: vision={settings.fusion.vision_weight} "
        f"embedding={settings.fusion.embedding_weight} measurement={settings.fusion.measurement_weight}"
    )
    print("-" * 50)

    uvicorn.run(
        "phenomatch.api:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        reload_dirs=["phenomatch", "ai", "config"] if args.reload else None,
        log_level=settings.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
