#!/usr/bin/env python3
"""
EML to mbox Converter

A Python script for packing a directory of individual email files (.eml, .mai)
into one mbox archive that mail clients such as Thunderbird can import.

Features:
- Writes a standard mbox postmark ("From_ line") for every message, built from
  the first From: and Date: headers found in the message
- Escapes body lines starting with "From" as ">From"
- Re-decodes legacy ISO-8859-1 content to UTF-8 without ever failing
- Optional repair of DOS (CR+LF) and old Mac line endings
- Handles Outlook style From: headers split over two lines
- Append to or overwrite an existing archive

Usage:
    python eml2mbox.py [-a] [-c] [-f] [-l] [-m] [-s] [-yz] [emlpath [mbox]]

    Examples:
    python eml2mbox.py ~/mail/exported
    python eml2mbox.py -c -m ~/mail/exported ~/mail/archive.mbox
    python eml2mbox.py -f ~/mail/exported/invoice.eml

License: MIT
Version: 1.0.0
"""

import os
import re
import sys
import argparse
from dataclasses import dataclass
from datetime import datetime
from dateutil.parser import parse as date_parse

# RFC 2822 named zones and their offsets
ZONE_OFFSETS = {
    'UT': '+0000', 'UTC': '+0000', 'GMT': '+0000',
    'EST': '-0500', 'EDT': '-0400',
    'CST': '-0600', 'CDT': '-0500',
    'MST': '-0700', 'MDT': '-0600',
    'PST': '-0800', 'PDT': '-0700',
}

MESSAGE_EXTENSIONS = ('.eml', '.mai')
DEFAULT_ARCHIVE_NAME = "archive.mbox"

LEGACY_ENCODING = "iso-8859-1"

FROM_HEADER_RE = re.compile(r"^From:\s")
DATE_HEADER_RE = re.compile(r"^Date:\s")

# Two leap years with different months, time at midnight and day 1
FIRST_DATE_DEFAULT = datetime(2000, 1, 1)
SECOND_DATE_DEFAULT = datetime(2004, 2, 1)

# Offsets of a day or more cannot be written as +HHMM
MAX_OFFSET_SECONDS = 24 * 3600


@dataclass(frozen=True)
class ConversionOptions:
    """Run-wide switches, fixed once the command line has been parsed."""

    ignore_extension: bool = False
    remove_trailing_cr: bool = False
    remove_leading_lf: bool = False
    multiline_from_header: bool = False
    use_raw_header_values: bool = False
    timezone_before_year: bool = False
    single_file_mode: bool = False

    @classmethod
    def from_args(cls, args):
        """
        Build the options from an argparse namespace.

        Args:
            args (argparse.Namespace): Parsed command-line arguments

        Returns:
            ConversionOptions: The frozen option set
        """
        return cls(
            ignore_extension=args.all_files,
            remove_trailing_cr=args.remove_cr,
            remove_leading_lf=args.remove_lf,
            multiline_from_header=args.multiline_from,
            use_raw_header_values=args.raw_headers,
            timezone_before_year=args.zone_before_year,
            single_file_mode=args.single_file,
        )


# ---------------------------------------------------------------------------
# Line transforms
# ---------------------------------------------------------------------------

def decode_legacy_line(raw_line):
    """
    Decode one raw line from the legacy single-byte encoding.

    Email files exported by older clients are rarely valid UTF-8, so every
    byte is read as ISO-8859-1. Anything that cannot be represented is
    replaced instead of raising.

    Args:
        raw_line (bytes or str): Line as read from the message file

    Returns:
        str: Decoded line, line terminator included
    """
    if isinstance(raw_line, str):
        return raw_line
    return raw_line.decode(LEGACY_ENCODING, errors="replace")


def escape_from_line(line):
    """Prefix a line starting with "From" with ">"."""
    if line.startswith("From"):
        return ">" + line
    return line


def remove_trailing_cr(line):
    """
    Remove the CR of a CR+LF line ending.

    emls usually have DOS line endings, so on Unix a stray CR is left
    hanging at the end of each line. Only the CR directly in front of
    the LF is dropped.
    """
    if line.endswith("\r\n"):
        return line[:-2] + "\n"
    return line


def remove_leading_lf(line):
    """Remove the LF ending a line."""
    # Old Macs break lines with CR, leaving a LF from the next line behind
    if line.endswith("\n"):
        return line[:-1]
    return line


def fix_line_endings(line, options):
    """
    Apply the configured line ending repairs, CR first, then LF.

    Args:
        line (str): Decoded line
        options (ConversionOptions): Run-wide switches

    Returns:
        str: Repaired line
    """
    if options.remove_trailing_cr:
        line = remove_trailing_cr(line)
    if options.remove_leading_lf:
        line = remove_leading_lf(line)
    return line


def strip_line_break(line):
    """Drop the CR and LF characters at the end of a line."""
    return line.rstrip("\r\n")


# ---------------------------------------------------------------------------
# Postmark formatting
# ---------------------------------------------------------------------------

def reduce_from_header(from_line):
    """
    Reduce a From line to the bare sender address.

    Converts 'From "Some One <aa@aa.aa>" <aa@aa.aa>' to 'From aa@aa.aa'.
    The last "<" and the last ">" in the line delimit the address. If either
    one is missing the line is returned untouched, it is then either already
    well formed or beyond repair.

    Args:
        from_line (str): Line starting with "From " (header label already
            rewritten from "From:")

    Returns:
        str: The canonical "From <address>" text
    """
    open_index = from_line.rfind('<')
    close_index = from_line.rfind('>')
    if open_index == -1 or close_index == -1:
        return from_line
    return from_line[:5] + from_line[open_index + 1:close_index]


def format_offset(seconds):
    """Render a UTC offset in seconds as a signed 4 digit string, e.g. -0700."""
    sign = "-" if seconds < 0 else "+"
    hours, minutes = divmod(abs(int(seconds)) // 60, 60)
    return f"{sign}{hours:02d}{minutes:02d}"


def resolve_zone_offset(zone_name, zone_seconds):
    """
    Turn the zone information found in a date into a postmark offset.

    A numeric offset from the header always wins, unless it is a day or more
    and so has no +HHMM form, in which case there is no offset. A bare zone
    name is looked up in ZONE_OFFSETS. Unknown names give no offset at all.

    Args:
        zone_name (str): Zone abbreviation seen in the date, or None
        zone_seconds (int): Numeric offset seen in the date, or None

    Returns:
        str: Signed 4 digit offset, or None
    """
    if zone_seconds is not None:
        if abs(zone_seconds) >= MAX_OFFSET_SECONDS:
            return None
        return format_offset(zone_seconds)
    if zone_name:
        return ZONE_OFFSETS.get(zone_name.upper())
    return None


def format_postmark_date(instant, offset=None, zone_year_order=False):
    """
    Format a datetime the way mbox postmark lines expect it.

    Args:
        instant (datetime): Moment to render, taken at face value
        offset (str): Signed 4 digit offset like "+0200", or None to omit it
        zone_year_order (bool): Put the offset before the year instead of
            after it

    Returns:
        str: e.g. "Mon Jan 02 15:04:05 2006 +0200"
    """
    if offset is None:
        return instant.strftime("%a %b %d %H:%M:%S %Y")
    if zone_year_order:
        return instant.strftime(f"%a %b %d %H:%M:%S {offset} %Y")
    return instant.strftime(f"%a %b %d %H:%M:%S %Y {offset}")


def parse_header_date(value):
    """
    Parse the value of a Date: header.

    dateutil copes with the many variants found in real mail ("Mon, 2 Jan
    2006 15:04:05 +0200 (CEST)", missing weekdays, named zones and so on).
    The zone it detects is captured through the tzinfos hook so it can be
    mapped onto a postmark offset. The wall-clock time is kept as written in
    the header.

    A date without year or month is rejected. dateutil fills missing fields
    from its default, so the value is parsed against two different defaults
    and both must agree. A missing day becomes 1 and a missing time 00:00:00.

    Args:
        value (str): Header value without the "Date:" label

    Returns:
        tuple: (naive datetime, offset string or None)

    Raises:
        ValueError: If the date cannot be parsed, lacks year or month, or is
            not a valid calendar date
        OverflowError: If a numeric field is absurdly large
    """
    seen_zone = {}

    def capture_zone(name, seconds):
        seen_zone['name'] = name
        seen_zone['seconds'] = seconds
        return None

    value = value.strip()
    parsed = date_parse(value, default=FIRST_DATE_DEFAULT, fuzzy=True, tzinfos=capture_zone)
    check = date_parse(value, default=SECOND_DATE_DEFAULT, fuzzy=True, tzinfos=capture_zone)
    if (parsed.year, parsed.month) != (check.year, check.month):
        raise ValueError(f"Incomplete date: {value}")

    offset = resolve_zone_offset(seen_zone.get('name'), seen_zone.get('seconds'))
    return parsed, offset


# ---------------------------------------------------------------------------
# Per-message processing
# ---------------------------------------------------------------------------

class MessageTranscoder:
    """
    Turns the lines of one email file into one mbox record.

    Feed every physical line to add_line() in order, then call
    get_processed_lines(). Slot 0 of the line list is kept free for the
    postmark line, which can only be built once the From: and Date: headers
    have been seen. Only the first From: and the first Date: header of a
    message count.

    Problems are never raised. They set `errors` and leave a short
    human-readable note in `notes` for the caller to report.
    """

    def __init__(self, options=None, clock=datetime.now):
        self.options = options or ConversionOptions()
        self.clock = clock
        self.lines = [None]
        self.sender = None
        self.pending_from = None
        self.postmark_date = None
        self.errors = False
        self.notes = []

    def _set_sender(self, value):
        if self.sender is None:
            self.sender = value

    def _set_postmark_date(self, value):
        if self.postmark_date is None:
            self.postmark_date = value

    def _flag(self, note):
        self.errors = True
        self.notes.append(note)

    def add_line(self, raw_line):
        """
        Consume one physical line of the message.

        Args:
            raw_line (bytes or str): Line including its terminator
        """
        line = decode_legacy_line(raw_line)

        # A body line that could pass for a postmark once the real one exists
        if self.sender is not None:
            line = escape_from_line(line)

        # Second half of a two-line From: header
        if self.pending_from is not None:
            line = self.pending_from + " " + line
            self.pending_from = None

        if self.sender is None and FROM_HEADER_RE.match(line):
            self._read_from_header(line)

        if self.postmark_date is None and DATE_HEADER_RE.match(line):
            self._read_date_header(line)

        self.lines.append(fix_line_endings(line, self.options))

    def _read_from_header(self, line):
        if "@" in line:
            sender = strip_line_break("From" + line[len("From:"):])
            if not self.options.use_raw_header_values:
                sender = reduce_from_header(sender)
            self._set_sender(sender)
        elif self.options.multiline_from_header:
            # Outlook puts the phrase on one line and the address on the next
            self.pending_from = strip_line_break(line)

    def _read_date_header(self, line):
        value = strip_line_break(DATE_HEADER_RE.sub("", line, count=1))
        if self.options.use_raw_header_values:
            self._set_postmark_date(value)
            return

        try:
            instant, offset = parse_header_date(value)
        except (ValueError, OverflowError):
            self._flag("skipping bad date")
            return
        self._set_postmark_date(
            format_postmark_date(instant, offset, self.options.timezone_before_year)
        )

    def get_processed_lines(self):
        """
        Build the finished mbox record.

        Returns:
            list: Postmark line, the message lines and an empty separator
                line, or None if no From: header with an address was found
        """
        if self.sender is None:
            self._flag("skipping mail without regular From: line")
            return None

        if self.postmark_date is None:
            self._flag("replacing bad date with now")
            self.postmark_date = format_postmark_date(self.clock())

        self.lines[0] = fix_line_endings(f"{self.sender} {self.postmark_date}", self.options)
        return self.lines + [""]


# ---------------------------------------------------------------------------
# Files and archive
# ---------------------------------------------------------------------------

def is_message_file(filename, ignore_extension=False):
    """Check whether a directory entry should be treated as an email."""
    if filename.startswith("."):
        return False
    if ignore_extension:
        return True
    return os.path.splitext(filename)[1].lower() in MESSAGE_EXTENSIONS


def find_message_files(eml_dir, ignore_extension=False, exclude=()):
    """
    List the email files of a directory, sorted by name.

    Args:
        eml_dir (str): Directory to scan (not recursive)
        ignore_extension (bool): Accept every file, not just .eml and .mai
        exclude (iterable): Paths to leave out, e.g. the target archive

    Returns:
        list: Absolute paths of the message files
    """
    excluded = {os.path.abspath(path) for path in exclude}
    paths = []
    for filename in sorted(os.listdir(eml_dir)):
        path = os.path.abspath(os.path.join(eml_dir, filename))
        if not os.path.isfile(path) or path in excluded:
            continue
        if is_message_file(filename, ignore_extension):
            paths.append(path)
    return paths


def choose_write_mode(mbox_path, ask=None):
    """
    Ask what to do with an archive that already exists.

    Args:
        mbox_path (str): Path of the existing archive
        ask (callable): Prompt function, input() by default

    Returns:
        str: "a" to append, "w" to overwrite, or None to cancel
    """
    ask = ask or input
    try:
        selection = ask(
            f"\nFile [{mbox_path}] exists! Please select: "
            "[A]ppend  [O]verwrite  [C]ancel (default) "
        )
    except EOFError:
        return None

    selection = selection.strip().lower()
    if selection == "a":
        return "a"
    if selection == "o":
        return "w"
    return None


def transcode_file(eml_path, options, clock=datetime.now):
    """
    Run one email file through a fresh MessageTranscoder.

    The file is read in binary mode. Lines are split on LF only and keep
    their terminators, CRs are left for the transcoder to deal with.

    Args:
        eml_path (str): Path to the email file
        options (ConversionOptions): Run-wide switches
        clock (callable): Source of the current time for the date fallback

    Returns:
        MessageTranscoder: The transcoder holding the whole message
    """
    transcoder = MessageTranscoder(options, clock=clock)
    with open(eml_path, "rb") as f:
        for raw_line in f:
            transcoder.add_line(raw_line)
    return transcoder


def write_record(sink, lines):
    """Write one mbox record, terminating every line that lacks a LF."""
    for line in lines:
        sink.write(line if line.endswith("\n") else line + "\n")


def convert_messages(paths, sink, options, clock=datetime.now):
    """
    Append every message to the archive, in the given order.

    Args:
        paths (list): Email files to convert
        sink: Text file object the archive is written to
        options (ConversionOptions): Run-wide switches
        clock (callable): Source of the current time for the date fallback

    Returns:
        tuple: (processed_count, error_count)
    """
    processed_count = 0
    error_count = 0
    width = len(str(len(paths)))

    for index, eml_path in enumerate(paths, start=1):
        label = f"{index:>{width}}/{len(paths)}: {os.path.basename(eml_path)}"
        try:
            transcoder = transcode_file(eml_path, options, clock)
        except OSError as e:
            error_count += 1
            print(f"⚠️ {label} [failed to read: {e}]")
            continue

        lines = transcoder.get_processed_lines()
        if lines is not None:
            write_record(sink, lines)
            processed_count += 1

        if transcoder.errors:
            error_count += 1
            notes = " ".join(f"[{note}]" for note in transcoder.notes)
            print(f"⚠️ {label} {notes}")
        else:
            print(f"✔️ {label}")

    return processed_count, error_count


SWITCH_MESSAGES = (
    ("ignore_extension", "Will ignore file extension, assume all files are emails"),
    ("remove_trailing_cr", "Will fix lines ending with a CR"),
    ("single_file_mode", "Will act on a single email file, rather than an email dir"),
    ("remove_leading_lf", "Will fix lines beginning with a LF"),
    ("multiline_from_header", "Will handle Outlook phrase + route_addr multiline From: headers"),
    ("use_raw_header_values", "Will use From and Date from mail headers in From_ line"),
    ("timezone_before_year", "Timezone will be placed before the year in From_ line"),
)


def describe_options(options):
    """
    List what the enabled switches will do, for the startup banner.

    Args:
        options (ConversionOptions): Run-wide switches

    Returns:
        list: One message per enabled switch, in switch order
    """
    return [message for name, message in SWITCH_MESSAGES if getattr(options, name)]


def main(argv=None):
    """
    Main entry point for the eml to mbox converter.

    Handles command-line argument parsing, source discovery, the overwrite
    prompt and runs the conversion.

    Returns:
        int: Process exit code
    """
    parser = argparse.ArgumentParser(
        description="Convert a directory of .eml files into one mbox archive",
        epilog="""
Examples:
  Convert every .eml/.mai file of a directory into <dir>/archive.mbox:
    %(prog)s ~/mail/exported

  Fix DOS line endings and Outlook two-line From: headers:
    %(prog)s -c -m ~/mail/exported ~/mail/archive.mbox

  Convert a single message:
    %(prog)s -f ~/mail/exported/invoice.eml
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument("emlpath", nargs="?", default=".",
                        help="Directory with the email files, or the email file with -f (default: current dir)")
    parser.add_argument("mbox", nargs="?",
                        help=f"Target mbox file (default: {DEFAULT_ARCHIVE_NAME} in the email directory)")
    parser.add_argument("-a", "--all-files", action="store_true",
                        help="Assume all files are emails, ignore extensions")
    parser.add_argument("-c", "--remove-cr", action="store_true",
                        help="Remove CRs (^M) appearing at end of lines (Unix)")
    parser.add_argument("-f", "--single-file", action="store_true",
                        help="Act on a single email file rather than a directory")
    parser.add_argument("-l", "--remove-lf", action="store_true",
                        help="Remove LFs appearing at beginning of lines (old Mac)")
    parser.add_argument("-m", "--multiline-from", action="store_true",
                        help="Handle From: headers split over two lines (phrase + address)")
    parser.add_argument("-s", "--raw-headers", action="store_true",
                        help="Use the From and Date header text as is in the From_ line")
    parser.add_argument("-yz", "--zone-before-year", action="store_true",
                        help="Put the timezone before the year in the From_ line")

    args = parser.parse_args(argv)
    options = ConversionOptions.from_args(args)

    source_path = os.path.abspath(args.emlpath)
    if options.single_file_mode:
        eml_dir = os.path.dirname(source_path)
    else:
        eml_dir = source_path
    mbox_path = os.path.abspath(args.mbox or os.path.join(eml_dir, DEFAULT_ARCHIVE_NAME))

    print(f"📥 Email source: {source_path}")
    print(f"📤 Target mbox: {mbox_path}")
    for message in describe_options(options):
        print(f"⚙️ {message}")

    if not os.path.isdir(eml_dir):
        print(f"❌ [{eml_dir}] is not a directory (might not exist). Please specify a valid dir")
        return 1

    if options.single_file_mode:
        if not os.path.isfile(source_path):
            print("❌ That email file does not exist. mbox file not created.")
            return 1
        paths = [source_path]
    else:
        paths = find_message_files(eml_dir, options.ignore_extension, exclude=[mbox_path])
        if not paths:
            print("❌ No *.eml files in this directory. mbox file not created.")
            return 1

    mode = "w"
    if os.path.exists(mbox_path):
        mode = choose_write_mode(mbox_path)
        if mode is None:
            print("🚫 Canceled, nothing written")
            return 0

    print(f"\n📂 About to process {len(paths)} mail files")
    with open(mbox_path, mode, encoding="utf-8", newline="") as sink:
        processed, errors = convert_messages(paths, sink, options)

    print(f"\n🎉 Conversion complete!")
    print(f"📊 Total: {processed} emails written, {errors} files with errors")
    return 0


if __name__ == "__main__":
    sys.exit(main())
