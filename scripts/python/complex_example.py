"""Read the current file from disk and report simple source statistics."""

import json
import re

try:
    file_info = hiliner.get_file_info()
    with open(file_info["path"], encoding="utf-8", errors="replace") as f:
        content = f.read()
    lines = content.splitlines()

    stats = {
        "total_lines": len(lines),
        "non_empty_lines": sum(1 for line in lines if line.strip()),
        "comment_lines": sum(1 for line in lines if line.lstrip().startswith("#")),
        "function_count": len(re.findall(r"^\s*(?:async\s+)?def\s+\w+", content, re.MULTILINE)),
        "class_count": len(re.findall(r"^\s*class\s+\w+", content, re.MULTILINE)),
    }

    hiliner.update_status(
        f"Analysis: {stats['non_empty_lines']}/{stats['total_lines']} lines, "
        f"{stats['function_count']} functions, {stats['class_count']} classes",
        "success",
    )
    print(json.dumps(stats, indent=2))
except OSError as e:
    hiliner.update_status(f"Error: {e}", "error")
    raise SystemExit(1)
