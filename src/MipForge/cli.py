"""Command-line interface for the image importer."""

import argparse
import logging
import os
import sys
from pathlib import Path

from tqdm import tqdm

from .config import ImporterConfig
from .core import ImageRequest, TextureInfo, save_rgba, serialize_texture, setup_logging

logger = logging.getLogger("mipforge")


def _summary_line(path: str, info: TextureInfo) -> str:
    if not info.completed:
        return f"FAILED  {path}: {info.failure}"
    flags = []
    if info.is_transparent:
        flags.append("alpha")
    if info.is_grayscale:
        flags.append("gray")
    missing = sum(1 for lvl in info.mip_levels if not lvl.complete)
    levels = f"{len(info.mip_levels)} mips" if info.mip_levels else "no mips"
    if missing:
        levels += f" ({missing} missing)"
    flag_text = f" [{', '.join(flags)}]" if flags else ""
    return (
        f"OK      {path}: {info.width}x{info.height} "
        f"src_channels={info.source_channels} {levels}{flag_text}"
    )


def _write_outputs(path: str, info: TextureInfo, output_dir: str,
                   ext: str, export_png: bool) -> None:
    stem = Path(path).stem
    serialize_texture(info, os.path.join(output_dir, stem + ext))
    if not export_png:
        return
    levels = info.mip_levels or []
    if not levels:
        save_rgba(info.rgba, info.width, info.height,
                  os.path.join(output_dir, f"{stem}.png"))
        return
    for level in levels:
        if not level.complete:
            logger.warning("Skipping PNG export of missing mip level %d for %s",
                           level.level, path)
            continue
        save_rgba(level.data, level.width, level.height,
                  os.path.join(output_dir, f"{stem}_mip{level.level}.png"))


def main():
    """Parse CLI arguments, import every input file, and write the results."""
    parser = argparse.ArgumentParser(
        description="Import images into canonical RGBA textures with mip chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  MipForge brick.png -o ./textures
  MipForge *.png -o ./textures --export-png
  MipForge ui_icon.tga --width 64 --height 64 --no-mipmaps
  MipForge --generate-config -c importer.yaml
        """
    )
    parser.add_argument("inputs", nargs="*", help="Image files to import")
    parser.add_argument("--output", "-o", default=".",
                        help="Output directory for .texture files")
    parser.add_argument("--config", "-c", help="Path to config YAML")
    parser.add_argument("--width", type=int, default=0,
                        help="Target width (0 = native)")
    parser.add_argument("--height", type=int, default=0,
                        help="Target height (0 = native)")
    parser.add_argument("--no-mipmaps", action="store_true",
                        help="Skip mip chain generation")
    parser.add_argument("--export-png", action="store_true",
                        help="Also write every level as PNG")
    parser.add_argument("--workers", type=int, help="Max concurrent imports")
    parser.add_argument("--generate-config", action="store_true",
                        help="Generate default config YAML")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])

    args = parser.parse_args()

    if args.generate_config:
        config = ImporterConfig()
        dest = args.config or "mipforge.yaml"
        config.to_yaml(dest)
        logger.info("Generated default %s", dest)
        print(f"Generated default {dest}")
        return

    if not args.inputs:
        parser.error("at least one input file is required")
    if args.width < 0 or args.height < 0:
        print("Error: --width/--height must be >= 0")
        sys.exit(1)

    # Surface config warnings before full logging is configured.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    if args.config:
        if not os.path.exists(args.config):
            logger.error("Config file not found: %s", args.config)
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        try:
            config = ImporterConfig.from_yaml(args.config)
        except ValueError as e:
            logger.error("Invalid config file '%s': %s", args.config, e)
            print(f"Error: Invalid config: {e}")
            sys.exit(1)
    else:
        config = ImporterConfig()

    if args.workers is not None:
        config.max_workers = args.workers
    if args.log_level:
        config.log_level = args.log_level

    try:
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    os.makedirs(args.output, exist_ok=True)
    setup_logging(config.log_level, args.output)

    generate_mipmaps = config.mipmap.enabled and not args.no_mipmaps

    from .importer import ImageImporter

    failed = 0
    with ImageImporter(config) as importer:
        jobs = []
        for path in args.inputs:
            info = TextureInfo()
            request = ImageRequest(
                path=path, width=args.width, height=args.height,
                generate_mipmaps=generate_mipmaps,
            )
            jobs.append((path, info, importer.load_async(request, info)))

        for path, info, future in tqdm(jobs, desc="Importing"):
            future.result()
            if info.completed:
                try:
                    _write_outputs(path, info, args.output,
                                   config.engine_texture_ext, args.export_png)
                except (OSError, ValueError) as e:
                    logger.error("Failed to write outputs for %s: %s", path, e)
                    failed += 1
                    continue
            else:
                failed += 1
            print(_summary_line(path, info))

    if failed:
        logger.error("%d of %d imports failed", failed, len(args.inputs))
        sys.exit(1)


if __name__ == "__main__":
    main()
