"""Command-line management of generated images and the service."""

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Sequence

from dotenv import load_dotenv
from fastapi import HTTPException
from rich.console import Console

from dalle_mcp import __version__
from dalle_mcp.cleanup import DirectoryAccessError
from dalle_mcp.client import ImageGenerationClient
from dalle_mcp.config import ConfigError, load_config, settings, validate_config
from dalle_mcp.handlers import handle_cleanup, handle_list, handle_stats
from dalle_mcp.log import configure_logging
from dalle_mcp.models import DEFAULT_MODEL, DEFAULT_QUALITY, DEFAULT_SIZE, DEFAULT_STYLE
from dalle_mcp.validation import ValidationError, validate

console = Console()
err_console = Console(stderr=True)

DEFAULT_DIRECTORY = "./generated-images"


def _print_json(data: object) -> None:
    console.print_json(json.dumps(data, default=str))


def cmd_stats(args: argparse.Namespace) -> int:
    stats = asyncio.run(handle_stats(args.directory))
    if args.json:
        _print_json(stats)
        return 0

    console.print(f"\n[bold]Image Statistics for {stats['directory']}[/bold]\n")
    if stats["count"] == 0:
        console.print("No images found.")
        return 0

    console.print(f"Total Images: {stats['count']}")
    console.print(f"Total Size: {stats['total_size_formatted']}")
    console.print(f"Average Size: {stats['average_size_formatted']}")
    console.print("\nOldest Image:")
    console.print(f"  Name: {stats['oldest_file']['name']}")
    console.print(f"  Age: {stats['oldest_file']['age_days']} days")
    console.print("\nNewest Image:")
    console.print(f"  Name: {stats['newest_file']['name']}")
    console.print(f"  Age: {stats['newest_file']['age_days']} days")
    console.print(f"\nAverage Age: {stats['average_age_days']} days\n")
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    if not args.json:
        console.print(f"\n[bold]Cleaning up images in {os.path.abspath(args.directory)}[/bold]")
        console.print(f"Retention period: {args.retention:g} days")
        if args.max is not None:
            console.print(f"Max files: {args.max}")
        if args.dry_run:
            console.print("[yellow]DRY RUN MODE - No files will be deleted[/yellow]\n")

    result = asyncio.run(handle_cleanup(
        args.directory,
        retention_days=args.retention,
        max_files=args.max,
        dry_run=args.dry_run,
    ))
    if args.json:
        _print_json(result)
        return 0 if result["success"] else 1

    console.print("\n[bold]Cleanup Results:[/bold]")
    console.print(f"Files scanned: {result['files_scanned']}")
    console.print(f"Files deleted: {result['files_deleted']}")
    console.print(f"Space freed: {result['space_freed_formatted']}")
    if result["errors"]:
        console.print(f"\n[red]Errors ({len(result['errors'])}):[/red]")
        for err in result["errors"]:
            console.print(f"  {err['file']}: {err['error']}")
    if args.dry_run and result["files_deleted"] > 0:
        console.print("\nRun without --dry-run to actually delete these files.")
    console.print("")
    return 0 if result["success"] else 1


def cmd_list(args: argparse.Namespace) -> int:
    listing = asyncio.run(handle_list(args.directory, limit=args.limit, sort=args.sort))
    if args.json:
        _print_json(listing)
        return 0

    if not listing["total"]:
        console.print("\nNo images found.\n")
        return 0

    console.print(f"\nListing {len(listing['files'])} of {listing['total']} images:\n")
    for index, item in enumerate(listing["files"], 1):
        console.print(f"{index}. {item['name']}")
        console.print(f"   Size: {item['size_formatted']} | Age: {item['age_days']} days")
    console.print("")
    return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
    console.print("\n[bold]Validating configuration...[/bold]\n")
    config = asyncio.run(validate_config(settings, check_api_key=not args.skip_api_check))

    console.print("[green]Configuration is valid![/green]")
    info = config.redacted()
    console.print(f"\nAPI Key: {info['api_key']}")
    console.print(f"Port: {info['port']}")
    console.print(f"Auth Token: {info['auth_token'].capitalize()}")
    console.print(f"Output Dir: {info['output_dir']}")
    console.print(f"Log Level: {info['log_level']}")
    console.print(f"Image Cleanup: {'Enabled' if config.image_cleanup_enabled else 'Disabled'}")
    if config.image_cleanup_enabled:
        console.print(f"  Retention: {config.image_retention_days} days")
        console.print(f"  Max Files: {config.image_max_count or 'Unlimited'}")
        console.print(f"  Interval: {config.image_cleanup_interval_hours} hours")
    console.print("")
    return 0


async def _generate(args: argparse.Namespace) -> list[dict]:
    config = load_config()
    client = ImageGenerationClient(config)
    params = validate({
        "prompt": args.prompt,
        "model": args.model,
        "size": args.size,
        "quality": args.quality,
        "style": args.style,
        "n": args.n,
    })
    if args.save:
        return await client.generate_and_save(params)
    return await client.generate(params)


def cmd_generate(args: argparse.Namespace) -> int:
    console.print("\n[bold]Generating image...[/bold]\n")
    images = asyncio.run(_generate(args))
    for image in images:
        if image.get("file_path"):
            console.print("[green]Image generated and saved![/green]")
            console.print(f"File: {image['file_path']}")
        else:
            console.print("[green]Image generated![/green]")
            if image.get("save_error"):
                console.print(f"[yellow]Could not save image: {image['save_error']}[/yellow]")
        if image.get("url"):
            console.print(f"URL: {image['url']}")
        if image.get("revised_prompt"):
            console.print(f"\nRevised prompt: {image['revised_prompt']}")
    console.print("")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    config = load_config()
    uvicorn.run("dalle_mcp.main:app", host=args.host, port=args.port or config.port)
    return 0


def cmd_stdio(_args: argparse.Namespace) -> int:
    from dalle_mcp.stdio import run

    run()
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="openai-image-gen-mcp",
        description="CLI tool for managing OpenAI Image Generation MCP",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="cmd", required=True)

    stats = sub.add_parser("stats", help="Display statistics about generated images")
    stats.add_argument("-d", "--directory", default=DEFAULT_DIRECTORY, help="Images directory")
    stats.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    stats.set_defaults(func=cmd_stats)

    cleanup = sub.add_parser("cleanup", help="Clean up old generated images")
    cleanup.add_argument("-d", "--directory", default=DEFAULT_DIRECTORY, help="Images directory")
    cleanup.add_argument("-r", "--retention", type=float, default=7, help="Retention period in days")
    cleanup.add_argument("-m", "--max", type=int, default=None, help="Maximum number of images to keep")
    cleanup.add_argument("--dry-run", action="store_true", help="Show what would be deleted without deleting")
    cleanup.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    cleanup.set_defaults(func=cmd_cleanup)

    listing = sub.add_parser("list", help="List all generated images")
    listing.add_argument("-d", "--directory", default=DEFAULT_DIRECTORY, help="Images directory")
    listing.add_argument("-l", "--limit", type=int, default=20, help="Limit number of results")
    listing.add_argument("--sort", choices=["name", "size", "age"], default="age", help="Sort field")
    listing.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    listing.set_defaults(func=cmd_list)

    check = sub.add_parser("validate-config", help="Validate configuration and API key")
    check.add_argument("--skip-api-check", action="store_true", help="Skip OpenAI API key validation")
    check.set_defaults(func=cmd_validate_config)

    generate = sub.add_parser("generate", help="Generate an image from the command line")
    generate.add_argument("prompt", help="Text description of the image")
    generate.add_argument("-m", "--model", default=DEFAULT_MODEL, help="Model to use (dall-e-2 or dall-e-3)")
    generate.add_argument("-s", "--size", default=DEFAULT_SIZE, help="Image size")
    generate.add_argument("-q", "--quality", default=DEFAULT_QUALITY, help="Image quality (standard or hd)")
    generate.add_argument("--style", default=DEFAULT_STYLE, help="Image style (vivid or natural)")
    generate.add_argument("-n", type=int, default=1, help="Number of images")
    generate.add_argument("--no-save", dest="save", action="store_false", help="Do not save image locally")
    generate.set_defaults(func=cmd_generate)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve.add_argument("--port", type=int, default=None, help="Port (default: PORT or 3010)")
    serve.set_defaults(func=cmd_serve)

    stdio = sub.add_parser("stdio", help="Run the JSON-RPC stdio server for MCP clients")
    stdio.set_defaults(func=cmd_stdio)

    return p


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = build_arg_parser().parse_args(argv)
    if args.cmd not in ("serve", "stdio"):
        configure_logging("WARNING")

    try:
        return args.func(args)
    except ValidationError as exc:
        err_console.print(f"[red]Invalid {exc.field}: {exc.message}[/red]")
    except (ConfigError, DirectoryAccessError) as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
    except HTTPException as exc:
        err_console.print(f"[red]Error: {exc.detail}[/red]")
    return 1


if __name__ == "__main__":
    sys.exit(main())
