"""
Output - Console output formatting.

Provides pretty-printed output with colors and formatting.
"""

import json
import sys

from epicsync.application.sync import SyncReport
from epicsync.core.domain.entities import MappingEntry
from epicsync.core.domain.enums import NodeOutcome


class Colors:
    """
    ANSI color codes for terminal output.

    Attributes:
        RESET: Reset all formatting to default.
        BOLD: Make text bold.
        DIM: Make text dimmed/faded.
        RED: Red text color.
        GREEN: Green text color.
        YELLOW: Yellow text color.
        BLUE: Blue text color.
        CYAN: Cyan text color.
        BG_YELLOW: Yellow background color.
    """

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"

    BG_YELLOW = "\033[43m"


class Symbols:
    """Unicode symbols for terminal output."""

    CHECK = "✓"
    CROSS = "✗"
    ARROW = "→"
    DOT = "•"
    WARN = "⚠"
    INFO = "ℹ"
    GEAR = "⚙"

    BOX_H = "─"


# Report outcome → item() status
OUTCOME_STATUS = {
    NodeOutcome.CREATED: "ok",
    NodeOutcome.UPDATED: "ok",
    NodeOutcome.UNCHANGED: None,
    NodeOutcome.SKIPPED_PARENT_FAILED: "skip",
    NodeOutcome.FAILED: "fail",
    NodeOutcome.CONFLICT: "conflict",
}


class Console:
    """
    Console output helper with colors and formatting.

    Attributes:
        color: Whether to use ANSI color codes.
        verbose: Whether to print debug messages.
        quiet: Whether to suppress most output (for CI/scripting).
        json_mode: Whether to output JSON format for programmatic use.
    """

    def __init__(
        self,
        color: bool = True,
        verbose: bool = False,
        quiet: bool = False,
        json_mode: bool = False,
    ):
        """
        Initialize the console output helper.

        Args:
            color: Enable colored output. Automatically disabled if stdout is not a TTY.
            verbose: Enable verbose debug output.
            quiet: Suppress most output, only show errors and final summary.
            json_mode: Output JSON format instead of text.
        """
        self.json_mode = json_mode
        self.color = color and sys.stdout.isatty() and not json_mode
        self.verbose = verbose
        self.quiet = quiet or json_mode

        self._json_errors: list[str] = []

        if self.quiet:
            self.verbose = False

    def _c(self, text: str, *codes: str) -> str:
        if not self.color:
            return text
        return "".join(codes) + text + Colors.RESET

    def print(self, text: str = "", force: bool = False) -> None:
        """
        Print text to stdout.

        Args:
            text: Text to print. Defaults to empty string for blank line.
            force: Print even in quiet mode.
        """
        if self.quiet and not force:
            return
        print(text)

    def header(self, text: str) -> None:
        if self.quiet:
            return
        width = max(len(text) + 4, 50)
        border = Colors.CYAN + Symbols.BOX_H * width + Colors.RESET if self.color else "-" * width

        self.print()
        self.print(border)
        self.print(self._c(f"  {text}", Colors.BOLD, Colors.CYAN))
        self.print(border)
        self.print()

    def section(self, text: str) -> None:
        if self.quiet:
            return
        self.print()
        self.print(self._c(f"{Symbols.ARROW} {text}", Colors.BOLD, Colors.BLUE))

    def success(self, text: str) -> None:
        if self.quiet:
            return
        self.print(self._c(f"  {Symbols.CHECK} {text}", Colors.GREEN))

    def error(self, text: str) -> None:
        """
        Print an error message with cross symbol.

        Always prints, even in quiet mode. Collected in JSON mode.
        """
        if self.json_mode:
            self._json_errors.append(text)
            return
        print(self._c(f"  {Symbols.CROSS} {text}", Colors.RED), file=sys.stderr)

    def config_errors(self, errors: list[str]) -> None:
        """Print configuration errors with a hint on where settings come from."""
        if self.json_mode:
            self._json_errors.extend(errors)
            return

        self.error("Configuration is incomplete:")
        for message in errors:
            print(self._c(f"    {Symbols.DOT} {message}", Colors.RED), file=sys.stderr)
        print(
            self._c(
                "    Set them in .epicsync.yaml, a .env file or the environment "
                "(GITHUB_TOKEN, AZURE_DEVOPS_PAT, ...).",
                Colors.DIM,
            ),
            file=sys.stderr,
        )

    def connection_error(self, tracker: str) -> None:
        """
        Print a failed pre-flight connection check with suggestions.

        Always prints, even in quiet mode.
        """
        if self.json_mode:
            self._json_errors.append(f"Cannot connect to {tracker}")
            return

        self.error(f"Cannot connect to {tracker}")
        for hint in (
            "Check that the token or PAT is valid and not expired",
            "Check the owner/repo or organization/project settings",
            "Check network access to the tracker API",
        ):
            print(self._c(f"    {Symbols.DOT} {hint}", Colors.DIM), file=sys.stderr)

    def warning(self, text: str) -> None:
        if self.quiet:
            return
        self.print(self._c(f"  {Symbols.WARN} {text}", Colors.YELLOW))

    def info(self, text: str) -> None:
        if self.quiet:
            return
        self.print(self._c(f"  {Symbols.INFO} {text}", Colors.CYAN))

    def detail(self, text: str) -> None:
        if self.quiet:
            return
        self.print(self._c(f"    {text}", Colors.DIM))

    def debug(self, text: str) -> None:
        if self.verbose:
            self.print(self._c(f"  [DEBUG] {text}", Colors.DIM))

    def item(self, text: str, status: str | None = None) -> None:
        """
        Print a list item with optional status indicator.

        Args:
            text: Item text to display.
            status: Optional status string. Special values:
                - "ok": Shows green checkmark
                - "skip": Shows yellow SKIP label
                - "fail": Shows red cross
                - "conflict": Shows yellow CONFLICT label
                - Any other string: Shows dimmed label
        """
        if self.quiet:
            return
        status_str = ""
        if status == "ok":
            status_str = self._c(f" [{Symbols.CHECK}]", Colors.GREEN)
        elif status == "skip":
            status_str = self._c(" [SKIP]", Colors.YELLOW)
        elif status == "fail":
            status_str = self._c(f" [{Symbols.CROSS}]", Colors.RED)
        elif status == "conflict":
            status_str = self._c(" [CONFLICT]", Colors.YELLOW)
        elif status:
            status_str = self._c(f" [{status}]", Colors.DIM)

        self.print(f"    {Symbols.DOT} {text}{status_str}")

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """
        Print a formatted table with headers.

        Column widths follow the widest cell.
        """
        if self.quiet:
            return
        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                if i < len(widths):
                    widths[i] = max(widths[i], len(str(cell)))

        header_line = "  " + "  ".join(
            self._c(h.ljust(widths[i]), Colors.BOLD) for i, h in enumerate(headers)
        )
        self.print(header_line)
        self.print("  " + "  ".join("-" * w for w in widths))

        for row in rows:
            row_line = "  " + "  ".join(
                str(cell).ljust(widths[i]) if i < len(widths) else str(cell)
                for i, cell in enumerate(row)
            )
            self.print(row_line)

    def dry_run_banner(self) -> None:
        if self.quiet:
            return
        self.print()
        banner = f"  {Symbols.GEAR} DRY-RUN MODE - No changes will be made"
        if self.color:
            self.print(f"{Colors.BG_YELLOW}{Colors.BOLD}{banner}{Colors.RESET}")
        else:
            self.print(f"*** {banner} ***")
        self.print()

    def sync_report(self, report: SyncReport) -> None:
        """
        Print a sync report.

        In JSON mode, outputs report.to_dict(). In quiet mode, prints a
        single line summary suitable for CI/scripting.
        """
        if self.json_mode:
            output = report.to_dict()
            if self._json_errors:
                output["errors"] = list(self._json_errors)
            print(json.dumps(output, indent=2))
            return

        if self.quiet:
            status = "OK" if report.success else "FAILED"
            mode = "dry-run" if report.dry_run else "executed"
            parts = [
                f"status={status}",
                f"mode={mode}",
                f"created={len(report.created)}",
                f"updated={len(report.updated)}",
                f"unchanged={len(report.unchanged)}",
                f"failed={len(report.failed)}",
                f"skipped={len(report.skipped)}",
                f"unresolved={len(report.unresolved)}",
            ]
            print(" ".join(parts))
            for result in report.failed:
                print(f"ERROR: {result.local_id}: {result.detail}")
            return

        self.section("Sync Complete")
        for result in report.results:
            remote = f" {Symbols.ARROW} {result.ref.remote_id}" if result.ref else ""
            self.item(f"{result.local_id}{remote}: {result}", OUTCOME_STATUS[result.outcome])

        self.print()
        self.table(
            ["Outcome", "Count"],
            [
                ["Created", str(len(report.created))],
                ["Updated", str(len(report.updated))],
                ["Unchanged", str(len(report.unchanged))],
                ["Skipped", str(len(report.skipped))],
                ["Failed", str(len(report.failed))],
                ["Conflicts", f"{len(report.conflicts)} ({len(report.unresolved)} unresolved)"],
            ],
        )

        self.print()
        if report.cancelled:
            self.warning("Sync was cancelled before all work was dispatched")
        if report.success:
            self.success(report.summary())
        else:
            self.error(report.summary())

    def mapping_entries(self, entries: list[MappingEntry]) -> None:
        """Print mapping store entries as a table (or JSON)."""
        if self.json_mode:
            print(json.dumps([entry.to_dict() for entry in entries], indent=2))
            return
        if not entries:
            self.info("Mapping store is empty")
            return
        self.table(
            ["Local id", "Provider", "Type", "Remote id", "Synced at"],
            [
                [
                    entry.local_id,
                    entry.provider,
                    entry.ref.item_type.value,
                    entry.ref.remote_id,
                    entry.synced_at,
                ]
                for entry in entries
            ],
        )
