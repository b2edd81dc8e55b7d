"""Summarise the current file and selection in the status bar."""

file_info = hiliner.get_file_info()
selection_info = hiliner.get_selection_info()

details = [
    f"Path: {file_info['path']}",
    f"Language: {file_info['language']}",
    f"Total lines: {file_info['total_lines']}",
    f"Current line: {file_info['current_line']}",
]
if selection_info["selection_count"]:
    details.append(
        f"Selected: {selection_info['selection_count']} lines "
        f"({len(selection_info['selected_text'])} chars)"
    )
else:
    details.append("No selection")

hiliner.update_status(details[0])

print("File analysis:")
for line in details:
    print(f"  {line}")
