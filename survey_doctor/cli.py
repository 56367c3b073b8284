from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from survey_doctor import __version__ as TOOL_VERSION
from survey_doctor.apply import ApplyResult
from survey_doctor.config import current_year, output_stamp
from survey_doctor.contracts import build_contract, build_run_summary
from survey_doctor.errors import ApplicationConsistencyError, SurveyDoctorError, UnknownProfileError
from survey_doctor.issue_taxonomy import EXPLAIN_RULES
from survey_doctor.output import template_csv, to_csv_text, write_workbook
from survey_doctor.parser import ALL_FORMATS, load_text, parse_text
from survey_doctor.pipeline import ValidationReport, apply_fixes, suggest_fixes, validate
from survey_doctor.schemas import profile_names
from survey_doctor.session import ReconciliationSession, starter_decisions
from survey_doctor.suggest import SuggestionSet

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_DEFECTS_FOUND = 3
EXIT_CANNOT_APPLY = 5

DECISION_KEYS = {"overrides", "drop", "duplicates", "values", "corrections"}


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SurveyDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "survey-doctor-output" / f"{input_path.stem}-{output_stamp()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def remove_generated_at(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if key == "generated_at":
                result[key] = "1970-01-01T00:00:00Z"
            else:
                result[key] = remove_generated_at(item)
        return result
    if isinstance(value, list):
        return [remove_generated_at(item) for item in value]
    return value


def safe_output_path(explicit: Path | None, default_path: Path) -> Path:
    path = explicit or default_path
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, UnknownProfileError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


# ══════════════════════════════════════════════════════════════════════════════
# LOADING
# ══════════════════════════════════════════════════════════════════════════════

def load_upload(args: argparse.Namespace) -> tuple[Path, ValidationReport, list[str]]:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    suffix = input_path.suffix.lower()
    if suffix not in ALL_FORMATS:
        raise CliError(
            f"Unsupported file type '{suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(ALL_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )
    parsed = parse_text(load_text(input_path))
    if not parsed.headers:
        raise CliError(f"No header row found in {input_path}", EXIT_PARSE_FAILED)
    report = validate(parsed.headers, parsed.rows, args.profile, current_year(args.current_year))
    return input_path, report, list(parsed.warnings)


def load_decisions(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise CliError(f"Decisions file not found: {path}", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise CliError(f"Could not read decisions: {exc}", EXIT_COMMAND_ERROR) from exc
    if not isinstance(payload, dict):
        raise CliError("Decisions root must be a JSON object.", EXIT_COMMAND_ERROR)
    unknown = sorted(set(payload) - DECISION_KEYS)
    if unknown:
        raise CliError(
            f"Unknown decision key(s): {', '.join(unknown)}. Expected: {', '.join(sorted(DECISION_KEYS))}",
            EXIT_COMMAND_ERROR,
        )
    return payload


# ══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def render_validate_text(input_path: Path, report: ValidationReport, *, verbose: bool = False) -> str:
    defects = report.defects()
    lines = [
        "survey-doctor validate",
        f"Input: {input_path}",
        f"Profile: {report.profile.name}",
        f"Rows: {len(report.rows)}",
        f"Valid: {report.is_valid}",
        f"Defects: {len(defects)}",
    ]
    if report.header_report.missing:
        lines.append("Missing columns: " + ", ".join(report.header_report.missing))
    shown = defects if verbose else defects[:20]
    if shown:
        lines.append("Defects:")
        lines.extend(f"- [{defect.rule_id}] {defect.message}" for defect in shown)
    if len(shown) < len(defects):
        lines.append(f"... {len(defects) - len(shown)} more (use -v to list all)")
    return "\n".join(lines) + "\n"


def render_suggestions_text(suggestion_set: SuggestionSet) -> str:
    lines = ["survey-doctor suggest"]
    if suggestion_set.suggestions:
        lines.append("Header fixes:")
        for suggestion in suggestion_set.suggestions:
            target = suggestion.target or "(needs a manual name or delete)"
            lines.append(f"- {suggestion.source} -> {target} [{suggestion.reason}]")
    for collision in suggestion_set.collisions:
        lines.append(f"Collision: {collision.to_error().message}")
    if suggestion_set.value_corrections:
        lines.append("Value fixes:")
        for correction in suggestion_set.value_corrections:
            target = correction.suggested if correction.suggested is not None else "(manual value needed)"
            rows = ", ".join(str(index) for index in correction.row_indexes)
            lines.append(f"- {correction.column} {correction.original or '(empty)'} -> {target} (rows {rows})")
    if len(lines) == 1:
        lines.append("Nothing to fix.")
    return "\n".join(lines) + "\n"


def render_apply_text(result: ApplyResult, output_path: Path | None) -> str:
    dataset = result.dataset
    counts = dataset.change_counts()
    lines = [
        "survey-doctor apply",
        f"Output: {output_path or '[dry run]'}",
        f"Rows out: {len(dataset.rows)}",
        f"Columns: {', '.join(dataset.headers)}",
        f"Changes logged: {len(dataset.changes)}",
    ]
    lines.extend(f"{kind}: {count}" for kind, count in sorted(counts.items()))
    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in result.warnings)
    return "\n".join(lines) + "\n"


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", help="Upload to check (.csv/.tsv/.txt/.xlsx)")
    parser.add_argument("--profile", required=True, choices=profile_names(), help="Schema profile")
    parser.add_argument("--current-year", dest="current_year", type=int, help="Latest acceptable year (default: today)")
    parser.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    parser.add_argument("--output", help="Explicit output path")
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="More human logs")


def build_parser() -> argparse.ArgumentParser:
    parser = SurveyDoctorArgumentParser(
        prog="survey-doctor",
        description="Validate and repair pavement survey uploads (deflection and LTE sheets).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_cmd = subparsers.add_parser("validate", help="Report every defect in an upload.")
    add_common_arguments(validate_cmd)

    suggest = subparsers.add_parser("suggest", help="Propose fixes and write a starter decisions file.")
    add_common_arguments(suggest)

    apply_cmd = subparsers.add_parser("apply", help="Apply fixes and write the cleaned dataset.")
    add_common_arguments(apply_cmd)
    apply_cmd.add_argument("--decisions", help="Decisions JSON (as written by 'suggest')")
    apply_cmd.add_argument("--format", choices=["csv", "xlsx"], default="csv", help="Cleaned output format")
    apply_cmd.add_argument("--dry-run", action="store_true", help="Run the fixes without writing outputs")

    template = subparsers.add_parser("template", help="Write a sample upload for a profile.")
    template.add_argument("profile", choices=profile_names(), help="Schema profile")
    template.add_argument("--output", help="Write to this path instead of stdout")

    explain = subparsers.add_parser("explain", help="Explain a stable rule id.")
    explain.add_argument("rule_id", help="Rule identifier")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_validate(args: argparse.Namespace) -> int:
    try:
        input_path, report, warnings = load_upload(args)
        payload = {
            "contract": build_contract("survey_doctor.validate"),
            "run_summary": build_run_summary(
                command="validate",
                report=report,
                input_path=input_path,
                warnings=warnings,
            ),
            "report": report.to_dict(),
        }
        payload = remove_generated_at(payload)
        if args.output or args.out_dir:
            out_dir = determine_output_dir(args, input_path)
            output_path = Path(args.output) if args.output else out_dir / "validation.json"
            write_json(output_path, payload)
            emit_human(f"Validation report: {output_path}", quiet=args.quiet)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            for warning in warnings:
                emit_human(f"Warning: {warning}", quiet=args.quiet)
            emit_human(render_validate_text(input_path, report, verbose=args.verbose).rstrip(), quiet=args.quiet)
        return EXIT_SUCCESS if report.is_valid else EXIT_DEFECTS_FOUND
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_suggest(args: argparse.Namespace) -> int:
    try:
        input_path, report, warnings = load_upload(args)
        suggestion_set = suggest_fixes(report, report.rows, report.profile, report.current_year)
        decisions = starter_decisions(suggestion_set, report.duplicate_groups)
        out_dir = determine_output_dir(args, input_path)
        decisions_path = safe_output_path(Path(args.output) if args.output else None, out_dir / "decisions.json")
        write_json(decisions_path, decisions)
        payload = remove_generated_at(
            {
                "contract": build_contract("survey_doctor.suggestions"),
                "run_summary": build_run_summary(
                    command="suggest",
                    report=report,
                    input_path=input_path,
                    output_path=decisions_path,
                    metrics={
                        "header_suggestions": len(suggestion_set.suggestions),
                        "collisions": len(suggestion_set.collisions),
                        "value_corrections": len(suggestion_set.value_corrections),
                        "duplicate_groups": len(report.duplicate_groups),
                    },
                    warnings=warnings,
                ),
                "suggestions": suggestion_set.to_dict(),
                "decisions": decisions,
            }
        )
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_suggestions_text(suggestion_set).rstrip(), quiet=args.quiet)
            emit_human(f"Decisions written: {decisions_path}", quiet=args.quiet)
        return EXIT_SUCCESS if report.is_valid else EXIT_DEFECTS_FOUND
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def build_session(args: argparse.Namespace, report: ValidationReport) -> ReconciliationSession:
    session = report.session()
    if args.decisions:
        decisions = load_decisions(Path(args.decisions))
        try:
            session.apply_decisions(decisions)
        except (KeyError, IndexError, ValueError, TypeError) as exc:
            raise CliError(f"Invalid decisions file: {exc}", EXIT_COMMAND_ERROR) from exc
    return session


def run_apply(args: argparse.Namespace) -> int:
    try:
        input_path, report, warnings = load_upload(args)
        session = build_session(args, report)
        result = apply_fixes(report.rows, session)
        out_dir = determine_output_dir(args, input_path)
        summary_path = out_dir / "apply-summary.json"

        if not result.ok:
            emit_human("survey-doctor apply: fixes cannot be applied yet", quiet=args.quiet)
            for blocker in result.error.blockers:
                emit_human(f"- {blocker}", quiet=args.quiet)
            if args.json:
                maybe_emit_json_stdout({"ok": False, "blockers": result.error.blockers}, True)
            return EXIT_CANNOT_APPLY

        dataset = result.dataset
        if args.output:
            output_path = Path(args.output)
        else:
            output_path = out_dir / f"{input_path.stem}-clean.{args.format}"
        if not args.dry_run:
            output_path = safe_output_path(output_path, output_path)
            if args.format == "xlsx":
                write_workbook(dataset, output_path)
            else:
                write_text(output_path, to_csv_text(dataset))

        payload = remove_generated_at(
            {
                "contract": build_contract("survey_doctor.apply_summary"),
                "run_summary": build_run_summary(
                    command="apply",
                    report=report,
                    input_path=input_path,
                    status="applied",
                    output_path=None if args.dry_run else output_path,
                    metrics={
                        "rows_out": len(dataset.rows),
                        "changes": dataset.change_counts(),
                    },
                    warnings=warnings + list(result.warnings),
                ),
                "headers": list(dataset.headers),
                "changes": [change.to_dict() for change in dataset.changes],
            }
        )
        if not args.dry_run:
            write_json(summary_path, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_apply_text(result, None if args.dry_run else output_path).rstrip(), quiet=args.quiet)
            if not args.dry_run:
                emit_human(f"Summary written: {summary_path}", quiet=args.quiet)
        return EXIT_SUCCESS
    except ApplicationConsistencyError as exc:
        eprint(str(exc))
        return EXIT_COMMAND_ERROR
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_template(args: argparse.Namespace) -> int:
    payload = template_csv(args.profile)
    if args.output:
        output_path = safe_output_path(Path(args.output), Path(args.output))
        write_text(output_path, payload)
        emit_human(f"Template written: {output_path}")
    else:
        sys.stdout.write(payload)
    return EXIT_SUCCESS


def run_explain(args: argparse.Namespace) -> int:
    rule = EXPLAIN_RULES.get(args.rule_id)
    if rule is None:
        eprint(f"Unknown rule id: {args.rule_id}")
        return EXIT_COMMAND_ERROR
    payload = {
        "rule_id": args.rule_id,
        "description": rule["description"],
        "evidence": rule["evidence"],
        "auto_fixable": rule["auto_fixable"],
        "disable_hint": rule["disable_hint"],
    }
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Rule: {args.rule_id}",
                    f"What it checks: {payload['description']}",
                    f"What triggers it: {payload['evidence']}",
                    f"Auto-fixable: {'yes' if payload['auto_fixable'] else 'no'}",
                    f"How to fix it: {payload['disable_hint']}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "validate":
            return run_validate(args)
        if args.command == "suggest":
            return run_suggest(args)
        if args.command == "apply":
            return run_apply(args)
        if args.command == "template":
            return run_template(args)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code
    except SurveyDoctorError as exc:
        eprint(str(exc))
        return EXIT_COMMAND_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
