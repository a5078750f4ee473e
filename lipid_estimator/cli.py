"""Command line entry point: label images, train, predict and move state around."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .constants import DEFAULT_K, MIN_TRAINING_SAMPLES
from .errors import EstimatorError
from .imaging import extract_file
from .session import Session
from .settings import load_settings


def _parse_args(argv: list[str]):
    settings = load_settings()
    parser = argparse.ArgumentParser(
        prog="lipid-estimator", description="Estimate lipid droplet percentage from labeled microscopy images."
    )
    parser.add_argument(
        "--storage-dir", default=settings["storage_dir"], help="Directory holding the session state (default: %(default)s)"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="Label images and add them to the dataset")
    p.add_argument("images", nargs="+", help="Image files")
    p.add_argument("--label", type=float, required=True, help="Lipid droplet percentage (0-100)")

    p = sub.add_parser("train", help="Batch-train the model on the dataset")
    p.add_argument("--kind", choices=("linear", "logistic", "knn"), default=settings["model_kind"])
    p.add_argument("--epochs", type=int, default=settings["epochs"], help="Passes over the dataset (default: %(default)s)")
    p.add_argument("--learning-rate", type=float, default=settings["learning_rate"])
    p.add_argument("--seed", type=int, default=settings["init_seed"], help="Seed for weight initialization")
    p.add_argument("--shuffle-seed", type=int, default=None, help="Shuffle samples each epoch with this seed")

    p = sub.add_parser("predict", help="Estimate the percentage for images")
    p.add_argument("images", nargs="+", help="Image files")
    p.add_argument("--kind", choices=("knn", "model"), default="model")
    p.add_argument("--k", type=int, default=settings.get("knn_k", DEFAULT_K))

    sub.add_parser("stats", help="Print dataset statistics")
    sub.add_parser("clear", help="Remove every labeled sample (the model is kept)")

    for name, help_text in (
        ("export-model", "Write the model state to a JSON file"),
        ("import-model", "Replace the model state from a JSON file"),
        ("export-dataset", "Write dataset and model state to a JSON file"),
        ("import-dataset", "Merge samples (and model state) from a JSON file"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("path")
    return parser.parse_args(argv), settings


def _print_report(title: str, report) -> None:
    print(f"{title}: {report.processed} processed, {report.skipped} skipped" + (" (cancelled)" if report.cancelled else ""))
    for item, reason in report.reasons:
        print(f"  {item}: {reason}")


def _write_text(path: str, text: str) -> bool:
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        logging.error(f"Could not write {path}: {e}")
        print(f"Export failed: {e}")
        return False
    return True


def _run(args, session) -> int:
    if args.command == "add":
        report = session.add_images([(path, args.label) for path in args.images])
        _print_report("Labeled", report)
        return 0 if report.processed else 2

    if args.command == "train":
        result = session.train(
            args.kind, epochs=args.epochs, learning_rate=args.learning_rate, seed=args.seed, shuffle_seed=args.shuffle_seed
        )
        if result is None:
            print(f"Training skipped: need at least {MIN_TRAINING_SAMPLES} labeled samples.")
            return 2
        _print_report("Training", result.report)
        print(f"  Epochs: {result.epochs_run}  Updates: {result.updates}")
        if result.final_loss is not None:
            print(f"  Final loss: {result.final_loss:.4f}  MAE: {result.history['mae'][-1]:.4f}")
        return 0

    if args.command == "predict":
        predict = session.predict_knn if args.kind == "knn" else session.predict
        status = 0
        for path in args.images:
            try:
                value = predict(extract_file(path, session.config), k=args.k)
            except EstimatorError as e:
                print(f"{path}: error ({e})")
                status = 2
                continue
            print(f"{path}: {'n/a' if value is None else f'{value:.2f}%'}")
        return status

    if args.command == "stats":
        print(json.dumps(session.stats(), indent=2))
        return 0

    if args.command == "clear":
        session.clear_dataset()
        print("Dataset cleared.")
        return 0

    if args.command == "export-model":
        outcome = session.export_model_text()
        if not outcome.ok:
            print(f"Export skipped: {outcome.reason}")
            return 2
        if not _write_text(args.path, outcome.value):
            return 2
        print(f"Model state written to {args.path}")
        return 0

    if args.command == "export-dataset":
        if not _write_text(args.path, session.export_document()):
            return 2
        print(f"Dataset written to {args.path}")
        return 0

    try:
        with open(args.path, "rb") as f:
            text = f.read()
    except OSError as e:
        print(f"Import rejected: could not read {args.path}: {e}")
        return 2
    if args.command == "import-model":
        outcome = session.import_model(text)
        if not outcome.ok:
            print(f"Import rejected: {outcome.reason}")
            return 2
        print(f"Model state imported ({outcome.value.kind}, {outcome.value.trained_sample_count} samples trained)")
        return 0

    outcome = session.import_document(text)
    if not outcome.ok:
        print(f"Import rejected: {outcome.reason}")
        return 2
    _print_report("Imported", outcome.value)
    return 0


def main(argv: list[str] | None = None) -> int:
    args, settings = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(message)s")
    settings = dict(settings, storage_dir=args.storage_dir)
    session = Session.from_settings(settings)
    return _run(args, session)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
