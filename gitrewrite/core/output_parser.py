"""Parse model output and extract structured data.

Ollama honours the JSON schema passed as ``format`` most of the time, but
some models still wrap the object in a markdown code block or add a
sentence around it. This module extracts the JSON object regardless.
"""

import json
import re
from typing import Any, Dict

from .exceptions import ResponseParseError

# Raw responses quoted in logs and errors are cut to this many bytes
RAW_RESPONSE_PREVIEW_BYTES = 1000


def truncate_for_log(output: str, max_bytes: int = RAW_RESPONSE_PREVIEW_BYTES) -> str:
    """Shorten a raw response for logging, marking the cut with an ellipsis."""
    encoded = output.encode("utf-8")
    if len(encoded) <= max_bytes:
        return output
    return encoded[: max_bytes - 3].decode("utf-8", errors="ignore") + "..."


class OutputParser:
    """Extract JSON objects from model output."""

    @staticmethod
    def extract_json(output: str) -> Dict[str, Any]:
        """Extract a JSON object from model output.

        Args:
            output: Raw response content

        Returns:
            Parsed JSON object

        Raises:
            ResponseParseError: If no JSON object can be found or parsed
        """
        if not output or not output.strip():
            raise ResponseParseError("Response is empty", raw_response=output or "")

        # 1. The whole response is the object (the normal case with format=schema)
        try:
            content = json.loads(output)
            if isinstance(content, dict):
                return content
        except json.JSONDecodeError:
            pass

        # 2. JSON in a code block: ```json\n{...}\n```
        code_block_pattern = r"```(?:json)?\s*\n([\s\S]*?)\n```"
        for match in re.findall(code_block_pattern, output, re.MULTILINE):
            try:
                content = json.loads(match.strip())
            except json.JSONDecodeError:
                continue
            if isinstance(content, dict):
                return content

        # 3. Outermost braces
        obj_start = output.find("{")
        obj_end = output.rfind("}")
        if obj_start != -1 and obj_end > obj_start:
            try:
                content = json.loads(output[obj_start : obj_end + 1])
                if isinstance(content, dict):
                    return content
            except json.JSONDecodeError:
                pass

        raise ResponseParseError(
            f"No valid JSON object found in response: {truncate_for_log(output, 200)}",
            raw_response=truncate_for_log(output),
        )
