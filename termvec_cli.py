"""
termvec_cli - Command line for termvec.

  build       doc-vector stream + postings index → term vector stream
  docvectors  postings index → random elemental doc-vector stream

Settings come from a YAML config (see termvec_config.yaml); paths can
be overridden per run.
"""

from __future__ import annotations

import argparse, logging, sys
from pathlib import Path

from termvec_model import Config, FrameIndex
from termvec import IncrementalTermVectors, generate_docvectors, write_vectors

DEFAULT_CONFIG = "termvec_config.yaml"


def _load_config(args, logger: logging.Logger) -> Config:
    if args.config and Path(args.config).exists():
        config = Config.load(args.config)
    elif args.config != DEFAULT_CONFIG:
        raise FileNotFoundError(f"Config not found: {args.config}")
    else:
        logger.info(f"{DEFAULT_CONFIG} not found, using defaults")
        config = Config()
    return config.replace(
        index_path=args.index,
        docvector_file=args.docvectors,
        termvector_file=getattr(args, "output", None),
    )


def cmd_build(config: Config, logger: logging.Logger) -> int:
    logger.info(f"Minimum frequency = {config.min_frequency}")
    logger.info(f"Maximum frequency = {config.max_frequency}")
    logger.info(f"Number non-alphabet characters = {config.max_nonalphabet_chars}")
    logger.info(f"Contents fields are: {config.fields_to_index}")

    index = FrameIndex.load(config.index_path)
    builder = IncrementalTermVectors(config, index, logger)
    store = builder.build()
    write_vectors(config.termvector_file, store, config, logger)
    if builder.stats.stream_exhausted:
        logger.warning(
            f"Only {builder.stats.docs_processed:,} of "
            f"{builder.stats.num_docs:,} documents had doc vectors"
        )
    return 0


def cmd_docvectors(config: Config, logger: logging.Logger) -> int:
    index = FrameIndex.load(config.index_path)
    generate_docvectors(config.docvector_file, index, config, logger)
    return 0


COMMANDS = {"build": cmd_build, "docvectors": cmd_docvectors}


# ── Entry Point ────────────────────────────────────────────────────


def main(argv: list[str] = None) -> int:
    parser = argparse.ArgumentParser(description="Incremental term vectors")
    parser.add_argument("--config", default=DEFAULT_CONFIG)
    parser.add_argument("--debug", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p_build = sub.add_parser("build", help="Build term vectors from doc vectors")
    p_build.add_argument("--index", help="Postings table")
    p_build.add_argument("--docvectors", help="Input doc-vector stream")
    p_build.add_argument("--output", help="Output term-vector stream")

    p_docs = sub.add_parser("docvectors", help="Write random elemental doc vectors")
    p_docs.add_argument("--index", help="Postings table")
    p_docs.add_argument("--docvectors", help="Output doc-vector stream")

    args = parser.parse_args(argv)

    # ── Logging ──
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    logger = logging.getLogger("termvec")

    # ── Config ──
    config = _load_config(args, logger)
    if not config.index_path:
        parser.error("an index is required (--index or index_path in config)")

    return COMMANDS[args.command](config, logger)


if __name__ == "__main__":
    sys.exit(main())
