"""Minimal action script showing the hiliner bridge API.

Bind it with ``"script": "scripts/python/hello.py"``.
"""

hiliner.update_status("Hello from an external Python file!")

file_info = hiliner.get_file_info()
print(f"Processing file: {file_info['path']}")
