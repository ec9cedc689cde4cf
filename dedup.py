#!/usr/bin/env python

# dedup - Finds files with identical content in directory trees and replaces
# the duplicates with hardlinks, reclaiming disk space without deleting data.
#
# Copyright 2007-2018  Antti Kaihola, Carl Henrik Lunde, Chad Netzer, et al
# Copyright 2003-2018  John L. Villalovos, Hillsboro, Oregon
#
# This program is free software; you can redistribute it and/or modify it under
# the terms of the GNU General Public License as published by the Free Software
# Foundation; either version 2 of the License, or (at your option) any later
# version.
#
# This program is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranty of MERCHANTABILITY or FITNESS
# FOR A PARTICULAR PURPOSE.  See the GNU General Public License for more
# details.
#
# You should have received a copy of the GNU General Public License along with
# this program; if not, write to the Free Software Foundation, Inc., 59 Temple
# Place, Suite 330, Boston, MA  02111-1307, USA.

import errno as _errno
import filecmp as _filecmp
import hashlib as _hashlib
import logging as _logging
import os as _os
import re as _re
import signal as _signal
import stat as _stat
import sys as _sys
import threading as _threading
import time as _time

from concurrent.futures import ThreadPoolExecutor as _ThreadPoolExecutor
from optparse import OptionParser as _OptionParser
from optparse import OptionGroup as _OptionGroup
from optparse import TitledHelpFormatter as _TitledHelpFormatter

__all__ = ["Deduplicator", "LinkingStats", "DedupError", "ConfigError",
           "LinkError", "UserDeclined", "default_options"]

# global declarations
__version__ = '2.1'
_VERSION = "2.1 - 2026-10-19 (19-Oct-2026)"

# Read size used for content digests (same order as filecmp's buffer)
DIGEST_BLOCK_SIZE = 64 * 1024

# Link outcomes, one per compared pair
ALREADY_LINKED = "already-linked"
CROSS_DEVICE = "cross-device-skip"
CONTENT_MISMATCH = "content-mismatch"
LINKED = "linked"
LINK_FAILED = "link-failed"
USER_DECLINED = "user-declined"


class DedupError(Exception):
    pass


class ConfigError(DedupError):
    """Bad input or missing prerequisite.  Fatal, nothing has been linked."""


class LinkError(DedupError):
    """The filesystem refused to replace a duplicate with a hardlink."""


class UserDeclined(DedupError):
    """An interactive confirmation was refused."""


class _Cancelled(DedupError):
    """cancel() arrived after a pair was verified, before it was linked."""


class _DedupOptionParser(_OptionParser):
    # Any usage error is a configuration error, which exits with status 1
    def error(self, msg):
        self.print_usage(_sys.stderr)
        self.exit(1, "%s: error: %s\n" % (self.get_prog_name(), msg))


def _parse_command_line(get_default_options=False, args=None):
    usage = "usage: %prog [options] [ directory ... ]"
    version = "%prog: " + _VERSION
    description = """\
Deduplicate files and replace duplicates with hardlinks.  If no directory is
given, the current directory is used.  Does not work across filesystems."""

    formatter = _TitledHelpFormatter(max_help_position=26)
    parser = _DedupOptionParser(usage=usage,
                                version=version,
                                description=description,
                                formatter=formatter)
    parser.add_option("-q", "--no-stats", dest="printstats",
                      help="Do not print the statistics",
                      action="store_false", default=True,)

    parser.add_option("-v", "--verbose", dest="verbosity",
                      help="Increase verbosity level (Up to 2 times)",
                      action="count", default=0,)

    parser.add_option("-j", "--jobs", dest="jobs", metavar="N",
                      help="Files to digest in parallel (default: %default)",
                      type="int", default=_os.cpu_count() or 1,)

    group = _OptionGroup(parser, title="Linking", description="""\
File content must always match byte for byte before a duplicate is replaced.
Hardlinks cannot cross filesystems, so duplicates on different devices are
only reported.""")
    parser.add_option_group(group)

    group.add_option("-b", "--backup", dest="backup",
                     help="Keep replaced files as numbered backups (file.~1~)",
                     action="store_true", default=False,)

    group.add_option("-d", "--dry-run", dest="dry_run",
                     help="Report what would be linked, change nothing",
                     action="store_true", default=False,)

    group.add_option("-i", "--interactive", dest="interactive",
                     help="Prompt before replacing each duplicate",
                     action="store_true", default=False,)

    group.add_option("-r", "--recursive", dest="recursive",
                     help="Recurse through subdirectories",
                     action="store_true", default=False,)

    # Allow for a way to get a default options object (for library use)
    if get_default_options:
        (options, args) = parser.parse_args([])
        options_validation(parser, options)
        return options

    (options, args) = parser.parse_args(args)
    if not args:
        args = [_os.getcwd()]
    args = [_os.path.normpath(_os.path.expanduser(dirname)) for dirname in args]
    for dirname in args:
        if not _os.path.isdir(dirname):
            parser.error("%s is not an existing directory" % dirname)

    options_validation(parser, options)

    return options, args


def options_validation(parser, options):
    if options.jobs < 1:
        parser.error("option -j: must be at least 1")

    if options.verbosity > 1:
        _logging.getLogger().setLevel(_logging.DEBUG)
    elif options.verbosity > 0:
        _logging.getLogger().setLevel(_logging.INFO)


def default_options():
    """Return an options object holding every default, for library use."""
    return _parse_command_line(get_default_options=True)


def _print_options(options):
    print("Options")
    print("-------")
    for name in ("backup", "dry_run", "interactive", "recursive"):
        if getattr(options, name):
            print("- %s on" % name)
    print("- verbose on")
    print("- %d digest jobs" % options.jobs)
    print("")


class Deduplicator:
    def __init__(self, options=None, confirm=None):
        if options is None:
            options = default_options()
        self.options = options
        self.stats = LinkingStats(options)
        # confirm(survivor_pathname, duplicate_pathname) -> bool
        self._confirm = confirm if confirm is not None else _ask_user
        self._cancel_event = _threading.Event()

    def cancel(self):
        """Stop before the next file is touched.  Safe to call from a signal
        handler or another thread."""
        self._cancel_event.set()

    @property
    def cancelled(self):
        return self._cancel_event.is_set()

    def run(self, directories):
        """Index, sort, verify and link.  Return stats."""
        # Prevent 'directories' from accidentally being a stringlike or
        # byteslike.  We don't want to "walk" each string character as a dir.
        if isinstance(directories, (str, bytes)):
            directories = [directories]
        if not directories:
            directories = [_os.getcwd()]

        for dirname in directories:
            if not _os.path.isdir(dirname):
                raise ConfigError("%s is not an existing directory" % dirname)

        self.stats.started_indexing()
        candidates = self.candidates(directories)
        self.stats.finished_indexing()

        if self.cancelled:
            _logging.warning("Cancelled while indexing, nothing was linked")
            self.stats.cancelled = True
            self.stats.print_stats(possibly_incomplete=True)
            return self.stats

        if len(candidates) < 2:
            raise ConfigError("found less than 2 files")

        self._deduplicate(_sorted_candidates(candidates))

        self.stats.print_stats(self.stats.cancelled)
        return self.stats

    def matched_file_info(self, directories):
        """Yield (pathname, stat_info) for every non-empty regular file"""
        seen = set()
        for top_dir in directories:
            # Use topdown=True for pruning. followlinks is False
            for dirpath, dirs, filenames in _os.walk(top_dir, topdown=True):
                if self.cancelled:
                    return
                if not self.options.recursive:
                    del dirs[:]

                self.stats.found_directory()

                for filename in filenames:
                    pathname = _os.path.abspath(_os.path.join(dirpath, filename))
                    if pathname in seen:
                        continue
                    seen.add(pathname)

                    try:
                        stat_info = _os.lstat(pathname)
                    except OSError as error:
                        _logging.warning("Unable to get stat info for: %s\n%s" % (pathname, error))
                        continue

                    # Symlinks, devices, fifos and sockets are never candidates
                    if not _stat.S_ISREG(stat_info.st_mode):
                        continue

                    if stat_info.st_size == 0:
                        self.stats.found_empty_file(pathname)
                        continue

                    yield (pathname, stat_info)

    def candidates(self, directories):
        """Return the list of _Candidate for all digestible files"""
        file_infos = list(self.matched_file_info(directories))
        jobs = self.options.jobs

        if jobs > 1 and len(file_infos) > 1:
            with _ThreadPoolExecutor(max_workers=jobs) as executor:
                results = list(executor.map(self._digest_file_info, file_infos))
        else:
            results = [self._digest_file_info(file_info) for file_info in file_infos]

        candidates = []
        for (pathname, stat_info), digest, error in results:
            if error is not None:
                _logging.warning("Unable to compute digest for: %s\n%s" % (pathname, error))
                self.stats.found_unreadable_file(pathname)
                continue
            if digest is None:
                # skipped after cancel()
                continue
            candidate = _Candidate(pathname, stat_info, digest)
            self.stats.found_candidate(candidate)
            candidates.append(candidate)
        return candidates

    def _digest_file_info(self, file_info):
        """Runs in the worker pool.  Returns (file_info, digest, error)."""
        if self.cancelled:
            return (file_info, None, None)
        try:
            return (file_info, _content_digest(file_info[0]), None)
        except OSError as error:
            return (file_info, None, error)

    def _deduplicate(self, ordered):
        """Compare each candidate with its predecessor in the sorted order,
        walking from the tail.  The later candidate of a pair survives, the
        earlier one is replaced by a link to it and then stands in for it in
        the next comparison."""
        self.stats.started_deduplication()
        for i in range(len(ordered) - 1, 0, -1):
            if self.cancelled:
                _logging.warning("Cancelled, %d candidates left unchecked" % i)
                self.stats.cancelled = True
                break

            survivor = ordered[i]
            duplicate = ordered[i - 1]
            outcome = self._verify_pair(survivor, duplicate)
            if outcome is None:
                continue
            if outcome == LINKED:
                outcome = self._link_pair(survivor, duplicate)
                if outcome is None:
                    _logging.warning("Cancelled, %s was left unchanged" % duplicate.pathname)
                    self.stats.cancelled = True
                    break
            self.stats.did_decision(outcome, survivor, duplicate)
        self.stats.finished_deduplication()

    def _verify_pair(self, survivor, duplicate):
        """Return the outcome for an adjacent pair, or None if the digests
        differ.  LINKED means the contents are verified equal."""
        if survivor.digest != duplicate.digest:
            return None

        self.stats.compared_pair()
        if _is_already_hardlinked(survivor, duplicate):
            return ALREADY_LINKED
        if survivor.st_dev != duplicate.st_dev:
            return CROSS_DEVICE

        try:
            equal = self._are_file_contents_equal(survivor.pathname, duplicate.pathname)
        except OSError as error:
            _logging.warning("Comparison failed: %s and %s\n%s" %
                             (survivor.pathname, duplicate.pathname, error))
            self.stats.failed_comparison()
            return CONTENT_MISMATCH

        if not equal:
            return CONTENT_MISMATCH
        return LINKED

    def _are_file_contents_equal(self, pathname1, pathname2):
        """Determine if the contents of two files are equal"""
        result = _filecmp.cmp(pathname1, pathname2, shallow=False)
        self.stats.did_comparison(pathname1, pathname2, result)
        return result

    def _link_pair(self, survivor, duplicate):
        self.stats.found_duplicate(survivor, duplicate)
        try:
            self._hardlink_files(survivor, duplicate)
        except UserDeclined:
            return USER_DECLINED
        except _Cancelled:
            return None
        except LinkError as error:
            _logging.error("%s" % error)
            return LINK_FAILED

        duplicate.merge_into(survivor)
        return LINKED

    def _hardlink_files(self, survivor, duplicate):
        """Replace duplicate with a hardlink to survivor.  Raises LinkError,
        UserDeclined or _Cancelled.

        Only new names are ever created with os.link(), which refuses to
        overwrite, and the duplicate is swapped out with an atomic
        os.replace(), so no existing file other than the duplicate is
        touched."""
        options = self.options
        src_pathname = survivor.pathname
        dst_pathname = duplicate.pathname

        if options.dry_run:
            return

        if options.interactive and not self._confirm(src_pathname, dst_pathname):
            raise UserDeclined("%s kept" % dst_pathname)

        # The prompt may have waited a long time
        if self.cancelled:
            raise _Cancelled(dst_pathname)

        # keep the old inode reachable under a numbered backup name
        backup_pathname = None
        if options.backup:
            try:
                backup_pathname = _link_to_unused_name(dst_pathname, _backup_names(dst_pathname))
            except OSError as error:
                raise LinkError("Failed to back up: %s\n%s" % (dst_pathname, error))

        try:
            tmp_pathname = _link_to_unused_name(src_pathname, _temp_names(dst_pathname))
        except OSError as error:
            _discard(backup_pathname)
            raise LinkError("Failed to hardlink: %s to %s\n%s" % (src_pathname, dst_pathname, error))

        try:
            _os.replace(tmp_pathname, dst_pathname)
        except OSError as error:
            _discard(tmp_pathname)
            _discard(backup_pathname)
            raise LinkError("Failed to replace: %s with %s\n%s" % (dst_pathname, tmp_pathname, error))


class _Candidate:
    """A non-empty regular file, its identity and its content digest"""
    __slots__ = ("pathname", "st_dev", "st_ino", "st_size", "digest", "consumed")

    def __init__(self, pathname, stat_info, digest):
        self.pathname = pathname
        self.st_dev = stat_info.st_dev
        self.st_ino = stat_info.st_ino
        self.st_size = stat_info.st_size
        self.digest = digest
        # Set once this file has been linked into another file's inode
        self.consumed = False

    def merge_into(self, survivor):
        """Take on the identity of the file we are now linked to."""
        self.st_dev = survivor.st_dev
        self.st_ino = survivor.st_ino
        self.consumed = True

    def __repr__(self):
        return "_Candidate(%r, dev=%s, ino=%s, size=%s)" % (self.pathname, self.st_dev,
                                                            self.st_ino, self.st_size)


class LinkingStats:
    def __init__(self, options):
        self.options = options
        self.reset()

    def reset(self):
        self.dircount = 0                   # how many directories we walk
        self.regularfiles = 0               # how many candidates we index
        self.num_empty_files = 0            # zero-length files skipped
        self.num_unreadable_files = 0       # files without a digest
        self.pairs_compared = 0             # adjacent pairs with equal digests
        self.comparisons = 0                # how many file content comparisons
        self.equal_comparisons = 0          # how many file comparisons found equal
        self.comparison_errors = 0          # comparisons that failed to read
        self.already_linked = 0             # pairs already sharing an inode
        self.cross_device = 0               # equal digests on different devices
        self.content_mismatches = 0         # equal digests, different content
        self.duplicates_found = 0           # pairs verified equal
        self.hardlinked_thisrun = 0         # hardlinks done (or would be done)
        self.user_declined = 0              # interactive confirmations refused
        self.link_failures = 0              # links the filesystem refused
        self.bytes_reclaimed = 0            # sizes of the replaced duplicates
        self.bytes_reclaimable = 0          # if every duplicate had been linked
        self.hardlinkpairs = []             # (survivor, duplicate) linked this run
        self.decisions = []                 # (outcome, survivor, duplicate)
        self.cancelled = False
        self.index_starttime = self.index_endtime = None
        self.dedup_starttime = self.dedup_endtime = None

    def started_indexing(self):
        self.index_starttime = _time.time()

    def finished_indexing(self):
        self.index_endtime = _time.time()

    def started_deduplication(self):
        self.dedup_starttime = _time.time()

    def finished_deduplication(self):
        self.dedup_endtime = _time.time()

    @property
    def index_time(self):
        return _elapsed(self.index_starttime, self.index_endtime)

    @property
    def dedup_time(self):
        return _elapsed(self.dedup_starttime, self.dedup_endtime)

    def found_directory(self):
        self.dircount += 1

    def found_empty_file(self, pathname):
        self.num_empty_files += 1
        if self.options.verbosity > 1:
            _logging.debug("Empty file    : %s" % pathname)

    def found_unreadable_file(self, pathname):
        self.num_unreadable_files += 1

    def found_candidate(self, candidate):
        self.regularfiles += 1
        if self.options.verbosity > 1:
            _logging.debug("%s - %s" % (candidate.digest, candidate.pathname))

    def compared_pair(self):
        self.pairs_compared += 1

    def did_comparison(self, pathname1, pathname2, result):
        self.comparisons += 1
        if result:
            self.equal_comparisons += 1

    def failed_comparison(self):
        self.comparison_errors += 1

    def found_duplicate(self, survivor, duplicate):
        self.duplicates_found += 1
        self.bytes_reclaimable += duplicate.st_size

    def did_decision(self, outcome, survivor, duplicate):
        self.decisions.append((outcome, survivor.pathname, duplicate.pathname))
        if outcome == ALREADY_LINKED:
            self.already_linked += 1
            message = "already hardlinked"
        elif outcome == CROSS_DEVICE:
            self.cross_device += 1
            message = "equal digest, but not located on the same filesystem"
        elif outcome == CONTENT_MISMATCH:
            self.content_mismatches += 1
            message = "equal digest, but content differs"
        elif outcome == LINKED:
            self.hardlinked_thisrun += 1
            self.bytes_reclaimed += duplicate.st_size
            self.hardlinkpairs.append((survivor.pathname, duplicate.pathname))
            message = "would be hardlinked" if self.options.dry_run else "hardlinked"
            if survivor.consumed:
                # the survivor was itself replaced by the previous link
                message += ", joining the files linked before it"
        elif outcome == USER_DECLINED:
            self.user_declined += 1
            message = "kept, declined by user"
        elif outcome == LINK_FAILED:
            self.link_failures += 1
            message = "hardlinking failed"
        else:
            raise ValueError("Unknown link outcome: %r" % (outcome,))
        if self.options.verbosity > 0:
            _logging.info("%s & %s -> %s" % (survivor.pathname, duplicate.pathname, message))

    def print_stats(self, possibly_incomplete=False):
        if not self.options.printstats:
            return

        if possibly_incomplete:
            print("Statistics possibly incomplete, the run was cancelled")

        # Print out the files we hardlinked, if any
        if self.options.verbosity > 0 and self.hardlinkpairs:
            if self.options.dry_run:
                print("Files that are hardlinkable")
            else:
                print("Files that were hardlinked this run")
            print("-----------------------")
            for (src_pathname, dst_pathname) in self.hardlinkpairs:
                print("from: %s" % src_pathname)
                print("  to: %s" % dst_pathname)
            print("")
        print("Deduplication statistics")
        print("------------------------")
        if self.options.dry_run:
            print("Statistics reflect what would result if dry-run were disabled")
        print("Checksum time              : %s seconds" % round(self.index_time, 3))
        print("Deduplication time         : %s seconds" % round(self.dedup_time, 3))
        print("Files indexed              : %s" % self.regularfiles)
        print("Pairs compared             : %s" % self.pairs_compared)
        print("Already hardlinked         : %s" % self.already_linked)
        print("Duplicates on other devices: %s" % self.cross_device)
        print("Content mismatches         : %s" % self.content_mismatches)
        print("Duplicates found           : %s" % self.duplicates_found)
        if self.options.dry_run:
            s1 = "Hardlinkable files found   : %s"
            s2 = "Reclaimable bytes          : %s (%s)"
        else:
            s1 = "Hardlinked this run        : %s"
            s2 = "Reclaimed bytes            : %s (%s)"
        print(s1 % self.hardlinked_thisrun)
        if self.user_declined:
            print("Declined by user           : %s" % self.user_declined)
        if self.link_failures:
            print("Failed hardlinks           : %s" % self.link_failures)
        print(s2 % (self.bytes_reclaimed, _humanize_number(self.bytes_reclaimed)))
        print("Total duplicate bytes      : %s (%s)" % (self.bytes_reclaimable,
                                                        _humanize_number(self.bytes_reclaimable)))
        if self.options.verbosity > 0:
            print("Directories                : %s" % self.dircount)
            print("Byte comparisons           : %s" % self.comparisons)
            if self.num_empty_files:
                print("Total empty files          : %s" % self.num_empty_files)
            if self.num_unreadable_files:
                print("Total unreadable files     : %s" % self.num_unreadable_files)
            if self.comparison_errors:
                print("Total failed comparisons   : %s" % self.comparison_errors)


#################
# Module functions
#################

def _sorted_candidates(candidates):
    """Order candidates so that equal digests form contiguous runs.  Within a
    run, files on one device and files sharing an inode are kept together."""
    return sorted(candidates, key=_candidate_sort_key)


def _candidate_sort_key(candidate):
    return (candidate.digest, candidate.st_dev, candidate.st_ino, candidate.pathname)


def _is_already_hardlinked(c1, c2):
    """If two files have the same inode and are on the same device then they
    are already hardlinked."""
    result = (c1.st_ino == c2.st_ino and  # Inodes equal
              c1.st_dev == c2.st_dev)     # Devices equal
    return result


def _content_digest(pathname):
    """Return the MD5 hex digest of the whole file.  Raises OSError."""
    digest = _hashlib.md5()
    with open(pathname, 'rb') as f:
        while True:
            byte_data = f.read(DIGEST_BLOCK_SIZE)
            if not byte_data:
                break
            digest.update(byte_data)
    return digest.hexdigest()


def _numbered_backup_name(pathname):
    """Return the next free 'name.~N~' backup pathname, like GNU ln."""
    dirname, filename = _os.path.split(pathname)
    pattern = _re.compile(r'^%s\.~([1-9][0-9]*)~$' % _re.escape(filename))
    highest = 0
    for name in _os.listdir(dirname or _os.curdir):
        match = pattern.match(name)
        if match:
            highest = max(highest, int(match.group(1)))
    return "%s.~%d~" % (pathname, highest + 1)


def _backup_names(pathname, tries=100):
    for i in range(tries):
        yield _numbered_backup_name(pathname)


def _temp_names(pathname, tries=1000):
    yield pathname + "._tmp_while_linking"
    for i in range(1, tries):
        yield "%s._tmp_while_linking.%d" % (pathname, i)


def _link_to_unused_name(src_pathname, names):
    """Hardlink src_pathname to the first of names that doesn't exist yet and
    return that name.  Raises OSError."""
    for name in names:
        try:
            _os.link(src_pathname, name)
        except OSError as error:
            if error.errno != _errno.EEXIST:
                raise
        else:
            return name
    raise OSError(_errno.EEXIST, "No unused name to link to", src_pathname)


def _discard(pathname):
    """Remove a name created during a failed link."""
    if pathname is None:
        return
    try:
        _os.unlink(pathname)
    except OSError as error:
        _logging.error("Failed to remove %s after a failed link\n%s" % (pathname, error))


def _ask_user(src_pathname, dst_pathname):
    try:
        answer = input("replace '%s' with a hardlink to '%s'? [y/N] " % (dst_pathname, src_pathname))
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _elapsed(start, end):
    if start is None:
        return 0.0
    if end is None:
        end = _time.time()
    return end - start


def _humanize_number(number):
    if number >= 1024 ** 5:
        return ("%.3f PiB" % (number / (1024.0 ** 5)))
    if number >= 1024 ** 4:
        return ("%.3f TiB" % (number / (1024.0 ** 4)))
    if number >= 1024 ** 3:
        return ("%.3f GiB" % (number / (1024.0 ** 3)))
    if number >= 1024 ** 2:
        return ("%.3f MiB" % (number / (1024.0 ** 2)))
    if number >= 1024:
        return ("%.3f KiB" % (number / 1024.0))
    return ("%d bytes" % number)


def main(args=None):
    # Remove user from logging output
    _logging.basicConfig(format='%(levelname)s:%(message)s')

    # Parse our argument list and get our list of directories
    options, directories = _parse_command_line(args=args)

    if options.verbosity > 0:
        _print_options(options)

    dd = Deduplicator(options)

    def _cancel(signum, frame):
        _logging.warning("Received signal %d, stopping before the next link" % signum)
        dd.cancel()

    old_handlers = [(signum, _signal.signal(signum, _cancel))
                    for signum in (_signal.SIGINT, _signal.SIGTERM)]
    try:
        dd.run(directories)
    except ConfigError as error:
        _sys.stderr.write("\nERROR - %s!\n" % error)
        _sys.exit(1)
    finally:
        for signum, handler in old_handlers:
            _signal.signal(signum, handler)


if __name__ == '__main__':
    main()
