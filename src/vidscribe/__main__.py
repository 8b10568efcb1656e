import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()


def main():
    parser = argparse.ArgumentParser(prog="vidscribe")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log pipeline progress")
    sub = parser.add_subparsers(dest="command")

    p_transcribe = sub.add_parser("transcribe", help="Transcribe one video and print its summary and chapters")
    p_transcribe.add_argument("url", type=str)
    p_transcribe.add_argument("--output", "-o", type=Path, default=None, help="Write the full result to this JSON file")
    p_transcribe.add_argument("--no-enrich", action="store_true", help="Skip LLM enrichment even if ANTHROPIC_API_KEY is set")

    p_serve = sub.add_parser("serve")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=8000)

    p_cache = sub.add_parser("cache", help="Manage cached transcriptions")
    p_cache.add_argument("action", choices=("clear", "purge"))

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from vidscribe import runtime
    settings = runtime.Settings.from_env()

    if args.command == "transcribe":
        runtime.require(settings, needs_ffmpeg=True, needs_assemblyai=True)
        from vidscribe.errors import InvalidReferenceError
        from vidscribe.main import Pipeline
        pipeline = Pipeline.from_settings(settings, skip_enrich=args.no_enrich)
        try:
            run = asyncio.run(pipeline.run(args.url))
        except InvalidReferenceError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(2)
        result = run.result
        source = "cache" if run.cached else ("placeholder" if run.degraded else "pipeline")
        print(f"\n===== TRANSCRIPTION RESULT ({source}) =====\n")
        print(f"Summary:\n{result.summary}\n")
        print("Chapters:")
        for c in result.chapters:
            print(f"  [{c.start_time}] {c.title}")
        if args.output:
            args.output.write_text(json.dumps(result.to_dict(), indent=2))
            print(f"\nFull result saved to: {args.output}")
        if run.degraded:
            sys.exit(1)

    elif args.command == "serve":
        runtime.require(settings, needs_ffmpeg=True, needs_assemblyai=True)
        import uvicorn
        from vidscribe import server
        from vidscribe.main import Pipeline
        from vidscribe.transcribe import AssemblyAIProvider, WebhookHub
        hub = WebhookHub()
        pipeline = Pipeline.from_settings(settings, hub=hub)
        provider = AssemblyAIProvider(settings.assemblyai_api_key)
        app = server.create_app(pipeline, hub=hub, provider=provider, settings=settings)
        uvicorn.run(app, host=args.host, port=args.port)

    elif args.command == "cache":
        from vidscribe.cache import FileStore, TranscriptionCache
        cache = TranscriptionCache(FileStore(settings.results_dir))
        if args.action == "clear":
            cache.clear()
            print(f"Cleared {settings.results_dir}")
        else:
            loaded, purged = cache.rehydrate()
            print(f"{loaded} valid entries, {purged} expired entries purged")

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
