from datetime import date, datetime
from io import StringIO
import csv
import re

from errors import ValidationError


def parse_date(date_str: str, field: str = "date") -> datetime:
    """Parse a date string into a naive local datetime object."""
    try:
        parsed = datetime.fromisoformat(date_str)
    except ValueError:
        try:
            return datetime.strptime(date_str, "%Y-%m-%d %H:%M")
        except ValueError:
            raise ValidationError({field: "Invalid date format"})
    if parsed.tzinfo is not None:
        # Events are compared against naive local times
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def combine_date_time(date_str: str, time_str: str = "18:00", field: str = "date") -> datetime:
    """Join a form's separate date and time fields."""
    return parse_date(f"{date_str} {time_str}", field=field)


def generate_csv(headers, rows):
    """Generate a CSV string with every field quoted and the header row first."""
    buffer = StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue()


def dated_filename(stem: str, extension: str, today: date | None = None) -> str:
    """Build an export filename embedding the date, e.g. `detailed_report_2024-03-15.csv`."""
    today = today or date.today()
    stem = re.sub(r"\s+", "_", stem.strip())
    return f"{stem}_{today.isoformat()}.{extension}"
