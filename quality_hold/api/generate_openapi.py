"""
Write the OpenAPI document of the service to disk.

    python -m quality_hold.api.generate_openapi [output_path]

The websocket stream is not part of OpenAPI, so its description is attached
under the `x-websocket-endpoints` extension.
"""

import json
import sys
from pathlib import Path

from quality_hold.api.main import app, websocket_info

DEFAULT_OUTPUT = Path("interfaces") / "openapi.json"


# PUBLIC_INTERFACE
def build_schema() -> dict:
    schema = app.openapi()
    schema["x-websocket-endpoints"] = websocket_info()["endpoints"]
    return schema


def main(argv=None) -> Path:
    args = sys.argv[1:] if argv is None else argv
    output = Path(args[0]) if args else DEFAULT_OUTPUT
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(build_schema(), indent=2), encoding="utf-8")
    return output


if __name__ == "__main__":
    print(f"OpenAPI written to {main()}")
