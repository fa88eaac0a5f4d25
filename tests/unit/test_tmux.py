import os
import subprocess
import unittest
from unittest.mock import patch

from runbook.errors import ErrorCode, StatementFailure, ToolchainError
from runbook.layout.tmux import PAGER_ESCAPE_SEQUENCE, TmuxHelper, slug


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestSlug(unittest.TestCase):

    def test_examples(self):
        self.assertEqual(slug("Hello World"), "hello-world")
        self.assertEqual(slug("  Test    File  "), "test-file")
        self.assertEqual(slug("TestFILE"), "test-file")
        self.assertEqual(slug("Test!@#$%^&*()File"), "test!@#$%^&*()file")
        self.assertEqual(slug("!@#$%^&*()"), "!@#$%^&*()")


class TestTmuxHelper(unittest.TestCase):

    @patch("runbook.layout.tmux.subprocess.run")
    def test_runbook_pane_is_looked_up_once(self, mock_run):
        mock_run.return_value = completed("%3\n")
        helper = TmuxHelper()

        self.assertEqual(helper.runbook_pane(), "%3")
        self.assertEqual(helper.runbook_pane(), "%3")

        mock_run.assert_called_once()
        self.assertEqual(mock_run.call_args[0][0], ["tmux", "display-message", "-p", "#D"])

    @patch("runbook.layout.tmux.subprocess.run")
    def test_split_direction_follows_depth(self, mock_run):
        mock_run.return_value = completed("%7\n")
        helper = TmuxHelper()

        self.assertEqual(helper.split("%1", 0, 50), "%7")
        self.assertEqual(
            mock_run.call_args[0][0],
            ["tmux", "split-window", "-h", "-t", "%1", "-p", "50", "-P", "-F", "#D", "-d"],
        )

        helper.split("%1", 1, 34)
        self.assertEqual(mock_run.call_args[0][0][2], "-v")

    @patch("runbook.layout.tmux.subprocess.run")
    def test_send_keys_escapes_pagers_first(self, mock_run):
        mock_run.return_value = completed()
        TmuxHelper().send_keys("tail -f log", "%2")

        self.assertEqual(PAGER_ESCAPE_SEQUENCE, "q C-u")
        self.assertEqual(
            mock_run.call_args[0][0],
            ["tmux", "send-keys", "-t", "%2", "q", "C-u", "tail -f log", "C-m"],
        )

    @patch("runbook.layout.tmux.subprocess.run")
    def test_set_directory_changes_directory_and_clears(self, mock_run):
        mock_run.return_value = completed()
        TmuxHelper().set_directory("/var/www", "%2")
        self.assertIn("cd /var/www; clear", mock_run.call_args[0][0])

    @patch("runbook.layout.tmux.subprocess.run")
    def test_window_and_pane_commands(self, mock_run):
        mock_run.return_value = completed("%9")
        helper = TmuxHelper()

        self.assertEqual(helper.new_window("Logs"), "%9")
        self.assertEqual(mock_run.call_args[0][0], ["tmux", "new-window", "-n", "Logs", "-P", "-F", "#D", "-d"])

        helper.rename_window("Main")
        self.assertEqual(mock_run.call_args[0][0], ["tmux", "rename-window", "Main"])

        helper.swap_panes("%1", "%2")
        self.assertEqual(mock_run.call_args[0][0], ["tmux", "swap-pane", "-d", "-t", "%1", "-s", "%2"])

        helper.kill_pane("%4")
        self.assertEqual(mock_run.call_args[0][0], ["tmux", "kill-pane", "-t", "%4"])

    @patch("runbook.layout.tmux.subprocess.run")
    def test_list_panes(self, mock_run):
        mock_run.return_value = completed("%0\n%1\n\n%5\n")
        self.assertEqual(TmuxHelper().list_panes(), {"%0", "%1", "%5"})

    @patch.dict(os.environ, {"TMUX_PANE": "%12"})
    @patch("runbook.layout.tmux.subprocess.run")
    def test_layout_file_embeds_tmux_identifiers(self, mock_run):
        mock_run.return_value = completed("/tmp/runbook_layout_1_s_2_%12_my-book.json\n")
        path = TmuxHelper(state_dir="/tmp").layout_file("my-book")

        argv = mock_run.call_args[0][0]
        self.assertEqual(argv[:4], ["tmux", "display-message", "-p", "-t"])
        self.assertEqual(argv[4], "%12")
        self.assertEqual(
            argv[5],
            "/tmp/runbook_layout_#{pid}_#{session_name}_#{pane_pid}_#{pane_id}_my-book.json",
        )
        self.assertEqual(path, "/tmp/runbook_layout_1_s_2_%12_my-book.json")

    @patch.dict(os.environ, {}, clear=True)
    @patch("runbook.layout.tmux.subprocess.run")
    def test_layout_file_escapes_hash_in_title(self, mock_run):
        mock_run.return_value = completed("/tmp/runbook_layout_1_s_2_%0_!@#$%^&*().json\n")
        TmuxHelper(state_dir="/tmp").layout_file("!@#$%^&*()")

        fmt = mock_run.call_args[0][0][-1]
        self.assertTrue(fmt.endswith("_#{pane_id}_!@##$%^&*().json"))

    @patch("runbook.layout.tmux.subprocess.run")
    def test_tmux_errors(self, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="no server running")
        with self.assertRaises(StatementFailure) as ctx:
            TmuxHelper().kill_pane("%1")
        self.assertEqual(ctx.exception.code, ErrorCode.LAYOUT_TMUX_FAILED)

        mock_run.side_effect = FileNotFoundError()
        with self.assertRaises(ToolchainError):
            TmuxHelper().kill_pane("%1")


if __name__ == "__main__":
    unittest.main()
