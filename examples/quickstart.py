#!/usr/bin/env python3
"""Quick Start Example for rampload.

Ramps POST requests against a local /pessoas endpoint in three stages
and checks every response is a 200.
Just run: python quickstart.py [URL]
"""

import asyncio
import sys
from pathlib import Path

# Add src to path (not needed if rampload is installed via pip)
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rampload import RampTest, from_dict
from rampload.errors import ConfigurationError, show_error
from rampload.progress import show_run_summary


def create_test(url: str = "http://localhost:80/pessoas") -> RampTest:
    """Create the three-stage ramp (for CLI/Docker usage)."""
    config = from_dict({
        "name": "Quick Start Ramp",
        "target_url": url,
        "request_method": "POST",
        "json": {"apelido": "ana", "nome": "Ana Barbosa", "nascimento": "1985-09-23"},
        "stages": [
            {"duration": "1s", "target": 100},
            {"duration": "5s", "target": 500},
            {"duration": "30s", "target": 1000},
        ],
        "checks": [{"name": "success login", "status": 200}],
    })
    return RampTest(config, console_output=True)


async def main(url: str) -> int:
    """Run the ramp and print the summary (for standalone execution)."""
    try:
        test = create_test(url)
    except ConfigurationError as e:
        show_error(e, context="Building the quick start config")
        return 2

    try:
        result = await test.run()
    except KeyboardInterrupt:
        print("\n\n⚠️ Run interrupted by user")
        test.stop()
        return 130

    show_run_summary(result)
    print("\n" + test.report(format="console"))
    return result.exit_code


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:80/pessoas"
    try:
        sys.exit(asyncio.run(main(target)))
    except KeyboardInterrupt:
        sys.exit(130)
