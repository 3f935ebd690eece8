"""
Compute a form's analytics report from the command line.

Uses the storage backends configured through the environment (see
formtrack.config) and prints the same JSON the dashboard endpoint returns.
No ownership check is made; this is an operator tool.

Usage:
    python -m formtrack.batch.form_report --form-id FORM [--range 30d] [--pretty]

Arguments:
    --form-id ID   Form to report on (repeatable)
    --range R      7d, 30d or 90d (anything else means 7d)
    --pretty       Indent the JSON output
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from formtrack.config import get_settings
from formtrack.lifespan import cleanup_resources, setup_resources

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("formtrack.batch.form_report")


async def run_reports(form_ids: list[str], range_token: str | None = None) -> list[dict[str, Any]]:
    """Build one report per form with freshly opened resources."""
    resources = await setup_resources(get_settings())
    try:
        results: list[dict[str, Any]] = []
        for form_id in form_ids:
            response = await resources.facade.build(form_id, range_token)
            logger.info(
                "Report for %s (%s): %d views, %d submissions",
                form_id,
                response.range,
                response.analytics.overview.total_views,
                response.analytics.overview.total_submissions,
            )
            results.append(response.model_dump(mode="json", by_alias=True))
        return results
    finally:
        await cleanup_resources(resources)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Compute form analytics reports.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--form-id", action="append", required=True, dest="form_ids")
    parser.add_argument("--range", dest="range_token", default=None)
    parser.add_argument("--pretty", action="store_true")
    args = parser.parse_args(argv)

    reports = asyncio.run(run_reports(args.form_ids, args.range_token))
    payload: Any = reports[0] if len(reports) == 1 else reports
    print(json.dumps(payload, indent=2 if args.pretty else None, sort_keys=args.pretty))
    return 0


if __name__ == "__main__":
    sys.exit(main())
