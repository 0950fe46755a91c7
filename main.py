#!/usr/bin/env python3
"""
Media generation orchestrator - command-line entry point.

Usage:
    # Generate an image
    python main.py generate --provider shenma --kind image --prompt "A lighthouse at dusk"

    # Generate a video from a first-frame reference
    python main.py generate --provider zhipu --kind video --prompt "Waves rolling in" \
        --reference https://example.com/frame.png --output waves.mp4

    # Check remaining quota
    python main.py quota --provider shenma
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

# Configure logging
logging.basicConfig(
    level=os.getenv("MEDIAGEN_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("mediagen")


DEFAULT_EXTENSIONS = {"image": ".png", "video": ".mp4"}


def build_provider_config(args: argparse.Namespace):
    from services.generation import ResolvedProviderConfig

    api_key = args.api_key or os.getenv("MEDIAGEN_API_KEY", "")
    if not api_key:
        raise SystemExit("No API key: pass --api-key or set MEDIAGEN_API_KEY")

    return ResolvedProviderConfig(
        provider=args.provider,
        base_url=args.base_url or os.getenv("MEDIAGEN_BASE_URL") or None,
        api_key=api_key,
        preferred_model=getattr(args, "model", None),
    )


def print_progress(job_id: str, percent: int, message: str):
    logger.info(f"[{job_id[:8]}] {percent:3d}% {message}")


async def generate(args: argparse.Namespace) -> bool:
    """
    Submit one job, wait for it, and write the asset.

    Returns:
        True if the job succeeded
    """
    from core.config import Config
    from services.generation import (
        GenerationOptions,
        GenerationRequest,
        JobOrchestrator,
        ReferenceAsset,
        decode_data_uri,
    )

    config = Config.from_env()
    for issue in config.validate():
        logger.warning(f"Config: {issue}")

    reference = None
    if args.reference:
        reference = ReferenceAsset(uri=args.reference, description=args.reference_description)

    request = GenerationRequest(
        kind=args.kind,
        prompt=args.prompt,
        reference_asset=reference,
        options=GenerationOptions(
            aspect_ratio=args.aspect_ratio,
            duration_seconds=args.duration,
        ),
    )

    orchestrator = JobOrchestrator(config=config, on_progress=print_progress)
    try:
        handle = await orchestrator.submit(build_provider_config(args), request)
        result = await orchestrator.wait(handle)
    finally:
        await orchestrator.close()

    for attempt in result.attempts:
        outcome = "ok" if attempt.succeeded else attempt.error.code
        logger.info(f"  tried {attempt.provider}/{attempt.model} ref={attempt.used_reference}: {outcome}")

    if not result.succeeded:
        print(f"Generation {result.state.value}: {result.error.message}")
        if result.error.raw:
            print(f"Provider said: {result.error.raw}")
        return False

    asset = result.asset
    if isinstance(asset, str) and asset.startswith("data:"):
        asset = decode_data_uri(asset)

    if isinstance(asset, bytes):
        output = Path(args.output or f"output/{result.job_id}{DEFAULT_EXTENSIONS[args.kind]}")
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(asset)
        print(f"Saved {len(asset)} bytes to {output}")
    else:
        print(f"Asset could not be downloaded, remote URL: {asset}")

    if result.processing_time_seconds is not None:
        print(f"Finished in {result.processing_time_seconds:.1f}s with {result.model}")
    return True


async def show_quota(args: argparse.Namespace) -> bool:
    from core.config import Config
    from services.generation import GenerationError, JobOrchestrator

    orchestrator = JobOrchestrator(config=Config.from_env())
    try:
        quota = await orchestrator.quota(build_provider_config(args))
    except GenerationError as e:
        print(f"Quota query failed [{e.error_code}]: {e}")
        return False
    finally:
        await orchestrator.close()

    if quota is None:
        print(f"{args.provider} does not report quota")
        return True

    print(f"Provider:  {args.provider}")
    print(f"Total:     {quota.total:,.0f}")
    print(f"Used:      {quota.used:,.0f}")
    print(f"Remaining: {quota.remaining:,.0f}")
    return True


def main(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(
        description="Media generation orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Text-to-image on the Shenma relay
    python main.py generate --provider shenma --kind image --prompt "A red fox in snow"

    # Image-to-image with a reference, falling back to text-only
    python main.py generate --provider shenma --kind image --prompt "Same fox, summer" \\
        --reference https://example.com/fox.png --reference-description "a red fox"

    # Quota
    python main.py quota --provider shenma
        """,
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--provider", "-p", required=True, help="Provider key (zhipu, shenma, dayuyu, gemini)")
    common.add_argument("--api-key", help="API key (default: $MEDIAGEN_API_KEY)")
    common.add_argument("--base-url", help="Override the provider endpoint (default: $MEDIAGEN_BASE_URL)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Generate command
    gen_parser = subparsers.add_parser("generate", parents=[common], help="Generate an image or video")
    gen_parser.add_argument("--kind", "-k", choices=["image", "video"], default="image", help="Asset kind")
    gen_parser.add_argument("--prompt", "-t", required=True, help="Prompt text")
    gen_parser.add_argument("--model", "-m", help="Preferred model (tried before the provider's fallbacks)")
    gen_parser.add_argument("--reference", "-r", help="Reference image (http(s) URL or data URI)")
    gen_parser.add_argument("--reference-description", help="Description used if the reference cannot be sent")
    gen_parser.add_argument("--aspect-ratio", default="16:9", help="Aspect ratio")
    gen_parser.add_argument("--duration", type=int, help="Video duration in seconds")
    gen_parser.add_argument("--output", "-o", help="Output file")

    # Quota command
    subparsers.add_parser("quota", parents=[common], help="Show remaining provider quota")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "generate":
        ok = asyncio.run(generate(args))
    else:
        ok = asyncio.run(show_quota(args))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
