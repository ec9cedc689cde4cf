#!/usr/bin/env python

import errno
import hashlib
import os
import os.path
import shutil
import sys
import tempfile
import unittest

from collections import namedtuple
from unittest import mock

import dedup

testdata1 = "1234" * 1024 + "abc"
testdata2 = "1234" * 1024 + "xyz"
testdata3 = "foo"  # Short so that filesystems may back into inodes

FakeStat = namedtuple("FakeStat", "st_dev st_ino st_size")


def get_inode(filename):
    return os.lstat(filename).st_ino


def make_options(**kwargs):
    options = dedup.default_options()
    options.printstats = False
    options.jobs = 1
    for name, value in kwargs.items():
        setattr(options, name, value)
    return options


def stats_summary(stats):
    return (stats.regularfiles, stats.pairs_compared, stats.already_linked,
            stats.cross_device, stats.content_mismatches, stats.duplicates_found,
            stats.hardlinked_thisrun, stats.bytes_reclaimed, stats.bytes_reclaimable)


class TestModuleFunctions(unittest.TestCase):
    def test_humanize_number(self):
        f = dedup._humanize_number
        self.assertEqual("0 bytes", f(0))
        self.assertEqual("1 bytes", f(1))
        self.assertEqual("1023 bytes", f(1023))
        self.assertEqual("1.000 KiB", f(1024))
        self.assertEqual("1.500 KiB", f(1536))
        self.assertEqual("1.000 MiB", f(1024**2))
        self.assertEqual("1.000 GiB", f(1024**3))
        self.assertEqual("1.000 TiB", f(1024**4))
        self.assertEqual("1.000 PiB", f(1024**5))

    def test_sorted_candidates_groups_digests(self):
        c = dedup._Candidate
        candidates = [c("/d", FakeStat(1, 4, 1), "bb"),
                      c("/a", FakeStat(1, 9, 1), "aa"),
                      c("/c", FakeStat(2, 1, 1), "aa"),
                      c("/b", FakeStat(1, 2, 1), "bb"),
                      c("/e", FakeStat(1, 3, 1), "aa")]
        ordered = dedup._sorted_candidates(candidates)
        self.assertEqual([x.pathname for x in ordered], ["/e", "/a", "/c", "/b", "/d"])
        # Input order doesn't matter
        self.assertEqual(ordered, dedup._sorted_candidates(reversed(candidates)))

    def test_is_already_hardlinked(self):
        c = dedup._Candidate
        self.assertTrue(dedup._is_already_hardlinked(c("/a", FakeStat(1, 5, 1), "x"),
                                                     c("/b", FakeStat(1, 5, 1), "x")))
        self.assertFalse(dedup._is_already_hardlinked(c("/a", FakeStat(1, 5, 1), "x"),
                                                      c("/b", FakeStat(2, 5, 1), "x")))
        self.assertFalse(dedup._is_already_hardlinked(c("/a", FakeStat(1, 5, 1), "x"),
                                                      c("/b", FakeStat(1, 6, 1), "x")))

    def test_unknown_outcome(self):
        stats = dedup.LinkingStats(make_options())
        a = dedup._Candidate("/a", FakeStat(1, 5, 1), "x")
        b = dedup._Candidate("/b", FakeStat(1, 6, 1), "x")
        self.assertRaises(ValueError, stats.did_decision, "bogus", a, b)
        stats.did_decision(dedup.LINK_FAILED, a, b)
        self.assertEqual(stats.link_failures, 1)

    def test_version(self):
        self.assertTrue(dedup._VERSION.startswith(dedup.__version__ + " "))
        with mock.patch("sys.stdout") as stdout:
            with self.assertRaises(SystemExit) as cm:
                dedup.main(["--version"])
        self.assertEqual(cm.exception.code, 0)
        output = "".join(call.args[0] for call in stdout.write.call_args_list)
        self.assertIn(dedup._VERSION, output)

    def test_merge_into(self):
        survivor = dedup._Candidate("/a", FakeStat(1, 5, 3), "x")
        duplicate = dedup._Candidate("/b", FakeStat(1, 6, 3), "x")
        self.assertFalse(duplicate.consumed)
        duplicate.merge_into(survivor)
        self.assertTrue(duplicate.consumed)
        self.assertEqual((duplicate.st_dev, duplicate.st_ino), (1, 5))
        self.assertEqual(duplicate.pathname, "/b")


class BaseTests(unittest.TestCase):
    # self.file_contents = { name: data }

    def tearDown(self):
        """Provide default tearDown() for all derived classes (for cleanup of
        files and dirs)."""
        self.remove_tempdir()

    def setup_tempdir(self):
        self.old_cwd = os.getcwd()
        self.root = tempfile.mkdtemp()
        os.chdir(self.root)

        # Keep track of all files, and their content
        self.file_contents = {}

    def remove_tempdir(self):
        os.chdir(self.old_cwd)
        shutil.rmtree(self.root)

    def verify_file_contents(self):
        for pathname, contents in self.file_contents.items():
            with open(pathname, "r") as f:
                actual = f.read()
                self.assertEqual(actual, contents)

    def make_file(self, pathname, contents):
        assert pathname not in self.file_contents
        assert not pathname.lstrip().startswith('/')
        dirname = os.path.dirname(pathname)
        if dirname and not os.path.isdir(dirname):
            os.makedirs(dirname)
        with open(pathname, 'w') as f:
            f.write(contents)
        self.file_contents[pathname] = contents

    def make_linked_file(self, src, dst):
        assert dst not in self.file_contents
        os.link(src, dst)
        self.file_contents[dst] = self.file_contents[src]

    def run_dedup(self, directories=None, confirm=None, **kwargs):
        if directories is None:
            directories = [self.root]
        self.deduplicator = dedup.Deduplicator(make_options(**kwargs), confirm=confirm)
        return self.deduplicator.run(directories)

    def outcomes(self, stats):
        return sorted(outcome for outcome, survivor, duplicate in stats.decisions)

    def inodes(self, *pathnames):
        return set(get_inode(pathname) for pathname in pathnames)


class TestTester(BaseTests):
    def setUp(self):
        self.setup_tempdir()

    def test_setup(self):
        self.make_file('dir2/name1.ext', testdata1)
        self.assertTrue(os.path.isfile('dir2/name1.ext'))
        self.assertEqual(os.lstat('dir2/name1.ext').st_nlink, 1)

        self.make_linked_file('dir2/name1.ext', 'name2.ext')
        self.assertEqual(os.lstat('dir2/name1.ext').st_nlink, 2)
        self.assertEqual(os.lstat('name2.ext').st_nlink, 2)

        self.verify_file_contents()


class TestContentDigest(BaseTests):
    def setUp(self):
        self.setup_tempdir()

    def test_full_content_digest(self):
        data = "x" * (dedup.DIGEST_BLOCK_SIZE * 2 + 7)
        self.make_file("big", data)
        expected = hashlib.md5(data.encode("ascii")).hexdigest()
        self.assertEqual(dedup._content_digest("big"), expected)

    def test_digest_differs_at_end(self):
        self.make_file("a", testdata1)
        self.make_file("b", testdata2)
        self.assertNotEqual(dedup._content_digest("a"), dedup._content_digest("b"))

    def test_missing_file_raises(self):
        self.assertRaises(OSError, dedup._content_digest, "missing")

    def test_numbered_backup_name(self):
        self.make_file("name", testdata3)
        path = os.path.join(self.root, "name")
        self.assertEqual(dedup._numbered_backup_name(path), path + ".~1~")
        self.make_file("name.~1~", testdata3)
        self.make_file("name.~3~", testdata3)
        self.make_file("othername.~7~", testdata3)
        self.make_file("name.~x~", testdata3)
        self.assertEqual(dedup._numbered_backup_name(path), path + ".~4~")


class TestScenario(BaseTests):
    """Files a and b hold "X", c holds "Y", one byte each."""
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", "X")
        self.make_file("b", "X")
        self.make_file("c", "Y")

    def test_link(self):
        stats = self.run_dedup()

        self.verify_file_contents()
        self.assertEqual(get_inode("a"), get_inode("b"))
        self.assertNotEqual(get_inode("a"), get_inode("c"))
        self.assertEqual(os.lstat("c").st_nlink, 1)

        self.assertEqual(stats.regularfiles, 3)
        self.assertEqual(stats.pairs_compared, 1)
        self.assertEqual(stats.comparisons, 1)
        self.assertEqual(stats.hardlinked_thisrun, 1)
        self.assertEqual(stats.bytes_reclaimed, 1)
        self.assertEqual(stats.bytes_reclaimable, 1)
        self.assertEqual(self.outcomes(stats), [dedup.LINKED])
        self.assertEqual(os.listdir(self.root).count("a._tmp_while_linking"), 0)
        self.assertEqual(sorted(os.listdir(self.root)), ["a", "b", "c"])

    def test_dryrun(self):
        stats = self.run_dedup(dry_run=True)

        self.verify_file_contents()
        for pathname in ("a", "b", "c"):
            self.assertEqual(os.lstat(pathname).st_nlink, 1)
        self.assertEqual(len(self.inodes("a", "b", "c")), 3)

        self.assertEqual(stats.bytes_reclaimable, 1)
        self.assertEqual(stats.hardlinked_thisrun, 1)
        self.assertEqual(self.outcomes(stats), [dedup.LINKED])

    def test_dryrun_idempotent(self):
        first = stats_summary(self.run_dedup(dry_run=True))
        second = stats_summary(self.run_dedup(dry_run=True))
        self.assertEqual(first, second)

    def test_dryrun_link_dryrun(self):
        self.run_dedup(dry_run=True)
        self.run_dedup()
        stats = self.run_dedup(dry_run=True)

        self.assertEqual(stats.hardlinked_thisrun, 0)
        self.assertEqual(stats.duplicates_found, 0)
        self.assertEqual(stats.bytes_reclaimable, 0)
        self.assertEqual(stats.already_linked, 1)

    def test_rerun_reports_already_linked(self):
        self.run_dedup()
        stats = self.run_dedup()

        self.assertEqual(stats.hardlinked_thisrun, 0)
        self.assertEqual(stats.comparisons, 0)
        self.assertEqual(self.outcomes(stats), [dedup.ALREADY_LINKED])

    def test_empty_file_excluded(self):
        self.make_file("e", "")
        self.make_file("f", "")
        stats = self.run_dedup()

        self.assertEqual(stats.regularfiles, 3)
        self.assertEqual(stats.num_empty_files, 2)
        self.assertEqual(stats.hardlinked_thisrun, 1)
        self.assertNotEqual(get_inode("e"), get_inode("f"))
        for outcome, survivor, duplicate in stats.decisions:
            self.assertNotIn(os.path.basename(survivor), ("e", "f"))
            self.assertNotIn(os.path.basename(duplicate), ("e", "f"))

    def test_symlinks_and_dirs_excluded(self):
        os.symlink("a", "s")
        os.mkdir("d")
        stats = self.run_dedup()

        self.assertTrue(os.path.islink("s"))
        self.assertEqual(stats.regularfiles, 3)
        self.assertEqual(stats.hardlinked_thisrun, 1)

    def test_same_root_twice(self):
        stats = self.run_dedup([self.root, self.root + "/"])
        self.assertEqual(stats.regularfiles, 3)
        self.assertEqual(stats.hardlinked_thisrun, 1)

    def test_parallel_digests(self):
        for i in range(20):
            self.make_file("many/%02d" % i, testdata1 if i % 2 else testdata2)
        serial = stats_summary(self.run_dedup(dry_run=True, recursive=True, jobs=1))
        parallel = stats_summary(self.run_dedup(dry_run=True, recursive=True, jobs=4))
        self.assertEqual(serial, parallel)

    def test_main(self):
        dedup.main(["-q", self.root])

        self.verify_file_contents()
        self.assertEqual(get_inode("a"), get_inode("b"))

    def test_main_dryrun(self):
        dedup.main(["-q", "--dry-run", self.root])

        self.assertEqual(len(self.inodes("a", "b", "c")), 3)

    def test_main_current_directory(self):
        dedup.main(["-q"])

        self.assertEqual(get_inode("a"), get_inode("b"))


class TestConfigErrors(BaseTests):
    def setUp(self):
        self.setup_tempdir()

    def test_less_than_two_files(self):
        self.make_file("a", "X")
        self.make_file("e", "")
        self.assertRaises(dedup.ConfigError, self.run_dedup)

    def test_less_than_two_files_exit_status(self):
        self.make_file("a", "X")
        with self.assertRaises(SystemExit) as cm:
            dedup.main(["-q", self.root])
        self.assertEqual(cm.exception.code, 1)

    def test_not_a_directory(self):
        self.make_file("a", "X")
        self.make_file("b", "X")
        self.assertRaises(dedup.ConfigError, self.run_dedup, [os.path.join(self.root, "a")])
        self.assertRaises(dedup.ConfigError, self.run_dedup, [os.path.join(self.root, "missing")])
        self.assertEqual(os.lstat("a").st_nlink, 1)

    def test_main_not_a_directory(self):
        with self.assertRaises(SystemExit) as cm:
            dedup.main(["-q", os.path.join(self.root, "missing")])
        self.assertEqual(cm.exception.code, 1)

    def test_main_unknown_option(self):
        with self.assertRaises(SystemExit) as cm:
            dedup.main(["--no-such-option", self.root])
        self.assertEqual(cm.exception.code, 1)

    def test_main_bad_jobs(self):
        with self.assertRaises(SystemExit) as cm:
            dedup.main(["-j", "0", self.root])
        self.assertEqual(cm.exception.code, 1)

    def test_main_help(self):
        with self.assertRaises(SystemExit) as cm:
            dedup.main(["--help"])
        self.assertEqual(cm.exception.code, 0)


class TestChainMerge(BaseTests):
    def setUp(self):
        self.setup_tempdir()

        self.make_file("dir1/name1.ext", testdata1)
        self.make_file("dir1/name2.ext", testdata1)
        self.make_file("dir1/name3.ext", testdata2)
        self.make_file("dir2/name1.ext", testdata1)
        self.make_file("dir3/name1.ext", testdata2)
        self.make_file("dir3/name1.noext", testdata1)
        self.make_file("dir4/name1.ext", testdata3)
        self.make_file("dir4/name2.ext", testdata3)

        self.group1 = ("dir1/name1.ext", "dir1/name2.ext", "dir2/name1.ext", "dir3/name1.noext")
        self.group2 = ("dir1/name3.ext", "dir3/name1.ext")
        self.group3 = ("dir4/name1.ext", "dir4/name2.ext")

    def test_hardlink_tree(self):
        stats = self.run_dedup(recursive=True)

        self.verify_file_contents()
        self.assertEqual(len(self.inodes(*self.group1)), 1)
        self.assertEqual(len(self.inodes(*self.group2)), 1)
        self.assertEqual(len(self.inodes(*self.group3)), 1)
        self.assertEqual(os.lstat("dir1/name1.ext").st_nlink, 4)

        # N equal files need N - 1 links
        self.assertEqual(stats.hardlinked_thisrun, 3 + 1 + 1)
        self.assertEqual(stats.comparisons, 5)
        self.assertEqual(stats.bytes_reclaimed, 3 * len(testdata1) + len(testdata2) + len(testdata3))

    def test_hardlink_tree_rerun(self):
        self.run_dedup(recursive=True)
        stats = self.run_dedup(recursive=True)

        self.assertEqual(stats.hardlinked_thisrun, 0)
        self.assertEqual(stats.already_linked, 5)
        self.assertEqual(stats.comparisons, 0)

    def test_dryrun_matches_real_run(self):
        dry = stats_summary(self.run_dedup(recursive=True, dry_run=True))
        real = stats_summary(self.run_dedup(recursive=True))
        self.assertEqual(dry, real)

    def test_existing_link_in_class(self):
        self.make_linked_file("dir1/name1.ext", "dir2/link")
        stats = self.run_dedup(recursive=True)

        self.verify_file_contents()
        self.assertEqual(len(self.inodes("dir2/link", *self.group1)), 1)
        self.assertEqual(stats.hardlinked_thisrun + stats.already_linked, 4 + 1 + 1)

        stats = self.run_dedup(recursive=True)
        self.assertEqual(stats.hardlinked_thisrun, 0)
        self.assertEqual(stats.already_linked, 4 + 1 + 1)

    def test_identity_follows_links(self):
        """After a pair is linked the earlier candidate carries the survivor's
        identity, so a class of N files needs only N - 1 comparisons."""
        dd = dedup.Deduplicator(make_options(dry_run=True))
        candidates = dd.candidates([os.path.join(self.root, "dir1"),
                                    os.path.join(self.root, "dir2"),
                                    os.path.join(self.root, "dir3")])
        group = [c for c in candidates if os.path.basename(c.pathname).startswith("name1")
                 and c.digest == dedup._content_digest("dir1/name1.ext")]
        group = dedup._sorted_candidates(group)
        self.assertEqual(len(group), 3)
        dd._deduplicate(group)

        self.assertEqual(dd.stats.comparisons, 2)
        self.assertEqual(len(set((c.st_dev, c.st_ino) for c in group)), 1)
        self.assertEqual([c.consumed for c in group], [True, True, False])

    def test_non_recursive(self):
        self.make_file("top1", testdata1)
        self.make_file("top2", testdata1)
        stats = self.run_dedup()

        self.assertEqual(stats.regularfiles, 2)
        self.assertEqual(get_inode("top1"), get_inode("top2"))
        for pathname in self.group1:
            self.assertEqual(os.lstat(pathname).st_nlink, 1)

    def test_multiple_dir_args(self):
        stats = self.run_dedup([os.path.join(self.root, "dir1"),
                                os.path.join(self.root, "dir2")])

        self.assertEqual(stats.regularfiles, 4)
        self.assertEqual(len(self.inodes("dir1/name1.ext", "dir1/name2.ext", "dir2/name1.ext")), 1)
        self.assertEqual(os.lstat("dir3/name1.noext").st_nlink, 1)
        self.assertEqual(os.lstat("dir3/name1.ext").st_nlink, 1)

    def test_main_recursive(self):
        dedup.main(["-q", "-r", self.root])

        self.verify_file_contents()
        self.assertEqual(len(self.inodes(*self.group1)), 1)


class TestDigestCollision(BaseTests):
    def setUp(self):
        self.setup_tempdir()
        self.make_file("x", testdata1)
        self.make_file("y", testdata2)

    def test_collision_is_not_linked(self):
        with mock.patch("dedup._content_digest", return_value="collision"):
            stats = self.run_dedup()

        self.verify_file_contents()
        self.assertNotEqual(get_inode("x"), get_inode("y"))
        self.assertEqual(self.outcomes(stats), [dedup.CONTENT_MISMATCH])
        self.assertEqual(stats.content_mismatches, 1)
        self.assertEqual(stats.comparisons, 1)
        self.assertEqual(stats.duplicates_found, 0)
        self.assertEqual(stats.bytes_reclaimable, 0)

    def test_comparison_failure(self):
        self.make_file("z", testdata1)
        with mock.patch("dedup._filecmp.cmp", side_effect=OSError(errno.EIO, "I/O error")):
            stats = self.run_dedup()

        self.assertEqual(self.outcomes(stats), [dedup.CONTENT_MISMATCH])
        self.assertEqual(stats.comparison_errors, 1)
        self.assertNotEqual(get_inode("x"), get_inode("z"))


class TestUnreadableFiles(BaseTests):
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", testdata1)
        self.make_file("b", testdata1)
        self.make_file("c", testdata1)

    def test_unreadable_file_excluded(self):
        real_digest = dedup._content_digest

        def digest(pathname):
            if os.path.basename(pathname) == "c":
                raise OSError(errno.EACCES, "Permission denied", pathname)
            return real_digest(pathname)

        with mock.patch("dedup._content_digest", side_effect=digest):
            stats = self.run_dedup(jobs=2)

        self.assertEqual(stats.regularfiles, 2)
        self.assertEqual(stats.num_unreadable_files, 1)
        self.assertEqual(get_inode("a"), get_inode("b"))
        self.assertEqual(os.lstat("c").st_nlink, 1)

    def test_too_few_readable_files(self):
        with mock.patch("dedup._content_digest", side_effect=OSError(errno.EACCES, "Permission denied")):
            self.assertRaises(dedup.ConfigError, self.run_dedup)


class TestDifferentDevices(BaseTests):
    """Real filesystems can't be set up portably, so the device number of one
    candidate is altered instead."""
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", testdata1)
        self.make_file("b", testdata1)
        self.dd = dedup.Deduplicator(make_options())
        self.a, self.b = dedup._sorted_candidates(self.dd.candidates([self.root]))

    def test_cross_device_pair(self):
        self.a.st_dev += 1
        self.assertEqual(self.dd._verify_pair(self.b, self.a), dedup.CROSS_DEVICE)
        self.assertEqual(self.dd.stats.comparisons, 0)

    def test_cross_device_not_linked(self):
        self.b.st_dev += 1
        self.dd._deduplicate([self.a, self.b])

        self.assertEqual(self.dd.stats.cross_device, 1)
        self.assertEqual(self.dd.stats.hardlinked_thisrun, 0)
        self.assertEqual(self.dd.stats.bytes_reclaimable, 0)
        self.assertNotEqual(get_inode("a"), get_inode("b"))

    def test_same_device_pair(self):
        self.assertEqual(self.dd._verify_pair(self.b, self.a), dedup.LINKED)
        self.assertEqual(self.dd.stats.comparisons, 1)


class TestBackup(BaseTests):
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", testdata1)
        self.make_file("b", testdata1)

    def test_backup(self):
        stats = self.run_dedup(backup=True)

        self.verify_file_contents()
        self.assertEqual(stats.hardlinked_thisrun, 1)
        self.assertEqual(get_inode("a"), get_inode("b"))

        backups = [name for name in os.listdir(self.root) if name.endswith(".~1~")]
        self.assertEqual(len(backups), 1)
        self.assertIn(backups[0], ("a.~1~", "b.~1~"))
        with open(backups[0]) as f:
            self.assertEqual(f.read(), testdata1)
        self.assertNotEqual(get_inode(backups[0]), get_inode("a"))

    def test_backup_dryrun(self):
        self.run_dedup(backup=True, dry_run=True)
        self.assertEqual(sorted(os.listdir(self.root)), ["a", "b"])


class TestInteractive(BaseTests):
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", testdata1)
        self.make_file("b", testdata1)
        self.make_file("c", testdata2)
        self.asked = []

    def answer(self, value):
        def confirm(src_pathname, dst_pathname):
            self.asked.append((src_pathname, dst_pathname))
            return value
        return confirm

    def test_declined(self):
        stats = self.run_dedup(interactive=True, confirm=self.answer(False))

        self.assertEqual(len(self.asked), 1)
        self.assertNotEqual(get_inode("a"), get_inode("b"))
        self.assertEqual(self.outcomes(stats), [dedup.USER_DECLINED])
        self.assertEqual(stats.user_declined, 1)
        self.assertEqual(stats.hardlinked_thisrun, 0)
        self.assertEqual(stats.bytes_reclaimed, 0)
        self.assertEqual(stats.bytes_reclaimable, len(testdata1))

    def test_accepted(self):
        stats = self.run_dedup(interactive=True, confirm=self.answer(True))

        self.assertEqual(len(self.asked), 1)
        self.assertEqual(get_inode("a"), get_inode("b"))
        self.assertEqual(stats.hardlinked_thisrun, 1)

    def test_dryrun_does_not_ask(self):
        stats = self.run_dedup(interactive=True, dry_run=True, confirm=self.answer(False))

        self.assertEqual(self.asked, [])
        self.assertEqual(stats.hardlinked_thisrun, 1)

    def test_default_prompt(self):
        with mock.patch("builtins.input", return_value="y"):
            self.assertTrue(dedup._ask_user("a", "b"))
        with mock.patch("builtins.input", return_value="no"):
            self.assertFalse(dedup._ask_user("a", "b"))
        with mock.patch("builtins.input", side_effect=EOFError):
            self.assertFalse(dedup._ask_user("a", "b"))


class TestLinkFailure(BaseTests):
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", testdata1)
        self.make_file("b", testdata1)
        self.make_file("c", testdata2)
        self.make_file("d", testdata2)

    def test_link_failure_restores_duplicate(self):
        with mock.patch("dedup._os.link", side_effect=OSError(errno.EMLINK, "Too many links")):
            stats = self.run_dedup()

        self.verify_file_contents()
        self.assertEqual(sorted(os.listdir(self.root)), ["a", "b", "c", "d"])
        self.assertEqual(len(self.inodes("a", "b", "c", "d")), 4)
        self.assertEqual(self.outcomes(stats), [dedup.LINK_FAILED, dedup.LINK_FAILED])
        self.assertEqual(stats.link_failures, 2)
        self.assertEqual(stats.bytes_reclaimed, 0)
        self.assertEqual(stats.bytes_reclaimable, len(testdata1) + len(testdata2))

    def test_replace_failure(self):
        with mock.patch("dedup._os.replace", side_effect=OSError(errno.EACCES, "Permission denied")):
            stats = self.run_dedup(backup=True)

        self.verify_file_contents()
        self.assertEqual(stats.link_failures, 2)
        self.assertEqual(sorted(os.listdir(self.root)), ["a", "b", "c", "d"])
        self.assertEqual(len(self.inodes("a", "b", "c", "d")), 4)

    def test_existing_temp_names_survive(self):
        self.make_file("a._tmp_while_linking", "unrelated 1")
        self.make_file("b._tmp_while_linking", "unrelated 2")
        self.make_file("c._tmp_while_linking", "unrelated 3")
        self.make_file("d._tmp_while_linking", "unrelated 4")
        stats = self.run_dedup()

        self.verify_file_contents()
        self.assertEqual(stats.hardlinked_thisrun, 2)
        self.assertEqual(get_inode("a"), get_inode("b"))
        self.assertEqual(get_inode("c"), get_inode("d"))
        self.assertEqual(sorted(os.listdir(self.root)), sorted(self.file_contents))

    def test_existing_backup_names_survive(self):
        self.make_file("a.~1~", "old backup of a")
        self.make_file("b.~1~", "old backup of b")
        stats = self.run_dedup(backup=True)

        self.verify_file_contents()
        self.assertEqual(stats.hardlinked_thisrun, 2)
        backups = [name for name in os.listdir(self.root) if name.endswith(".~2~")]
        self.assertEqual(len(backups), 1)
        self.assertIn(backups[0], ("a.~2~", "b.~2~"))
        with open(backups[0]) as f:
            self.assertEqual(f.read(), testdata1)


class TestCancel(BaseTests):
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", testdata1)
        self.make_file("b", testdata1)
        self.make_file("c", testdata1)

    def test_cancel_before_run(self):
        dd = dedup.Deduplicator(make_options())
        dd.cancel()
        stats = dd.run([self.root])

        self.assertTrue(stats.cancelled)
        self.assertEqual(stats.regularfiles, 0)
        self.assertEqual(len(self.inodes("a", "b", "c")), 3)

    def test_cancel_during_confirmation(self):
        def confirm(src_pathname, dst_pathname):
            self.asked.append(dst_pathname)
            dd.cancel()
            return True

        self.asked = []
        dd = dedup.Deduplicator(make_options(interactive=True), confirm=confirm)
        stats = dd.run([self.root])

        self.assertTrue(stats.cancelled)
        self.assertEqual(len(self.asked), 1)
        self.assertEqual(stats.hardlinked_thisrun, 0)
        self.assertEqual(stats.decisions, [])
        self.assertEqual(len(self.inodes("a", "b", "c")), 3)
        self.assertEqual(sorted(os.listdir(self.root)), ["a", "b", "c"])
        self.verify_file_contents()

    def test_cancel_between_pairs(self):
        calls = []

        def confirm(src_pathname, dst_pathname):
            calls.append(dst_pathname)
            if len(calls) == 2:
                dd.cancel()
            return True

        dd = dedup.Deduplicator(make_options(interactive=True), confirm=confirm)
        stats = dd.run([self.root])

        self.assertTrue(stats.cancelled)
        self.assertEqual(stats.hardlinked_thisrun, 1)
        self.assertEqual(len(self.inodes("a", "b", "c")), 2)
        self.verify_file_contents()


class TestVerboseLogging(BaseTests):
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", testdata1)
        self.make_file("b", testdata1)
        self.make_file("c", testdata1)

    def test_decisions_logged(self):
        with self.assertLogs(level="INFO") as cm:
            stats = self.run_dedup(verbosity=1)

        self.assertEqual(stats.hardlinked_thisrun, 2)
        linked = [line for line in cm.output if line.endswith("-> hardlinked")]
        joined = [line for line in cm.output
                  if line.endswith("-> hardlinked, joining the files linked before it")]
        self.assertEqual(len(linked), 1)
        self.assertEqual(len(joined), 1)

    def test_digests_logged(self):
        digest = dedup._content_digest("a")
        with self.assertLogs(level="DEBUG") as cm:
            self.run_dedup(verbosity=2, dry_run=True)

        digest_lines = [line for line in cm.output if digest in line]
        self.assertEqual(len(digest_lines), 3)

    def test_quiet_by_default(self):
        with mock.patch("dedup._logging.info") as info:
            self.run_dedup()
        self.assertFalse(info.called)

    def test_elapsed_times(self):
        stats = self.run_dedup()

        self.assertIsNotNone(stats.index_starttime)
        self.assertIsNotNone(stats.dedup_endtime)
        self.assertGreaterEqual(stats.index_time, 0.0)
        self.assertGreaterEqual(stats.dedup_time, 0.0)
        self.assertLessEqual(stats.index_endtime, stats.dedup_starttime)

    def test_elapsed_times_before_run(self):
        stats = dedup.LinkingStats(make_options())
        self.assertEqual(stats.index_time, 0.0)
        self.assertEqual(stats.dedup_time, 0.0)


class TestPrintStats(BaseTests):
    def setUp(self):
        self.setup_tempdir()
        self.make_file("a", "X")
        self.make_file("b", "X")

    def printed(self, **kwargs):
        options = make_options(printstats=True, **kwargs)
        with mock.patch("sys.stdout") as stdout:
            dedup.Deduplicator(options).run([self.root])
        return "".join(call.args[0] for call in stdout.write.call_args_list)

    def test_print_stats(self):
        output = self.printed()
        self.assertIn("Hardlinked this run        : 1", output)
        self.assertIn("Reclaimed bytes            : 1 (1 bytes)", output)

    def test_print_stats_dryrun(self):
        output = self.printed(dry_run=True)
        self.assertIn("Statistics reflect what would result if dry-run were disabled", output)
        self.assertIn("Hardlinkable files found   : 1", output)
        self.assertIn("Reclaimable bytes          : 1 (1 bytes)", output)


if __name__ == '__main__':
    unittest.main()
