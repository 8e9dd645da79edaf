"""测试配置监控器"""

import os
import tempfile
import time
from unittest.mock import Mock

from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from overseer.services.config_manager import ConfigManager
from overseer.services.config_watcher import ConfigFileHandler, ConfigWatcher

CONFIG_CONTENT = """
targets:
  - id: web
    address: web.internal:80
    probe_kind: tcp
    interval: 10
    timeout: 2
"""

UPDATED_CONTENT = CONFIG_CONTENT + """
  - id: dns
    address: example.com
    probe_kind: dns
    interval: 30
    timeout: 5
"""


def bump_mtime(path, seconds=10):
    stat = os.stat(path)
    os.utime(path, (stat.st_atime, stat.st_mtime + seconds))


class TestConfigFileHandler:
    """测试ConfigFileHandler类"""

    def setup_method(self):
        self.callback = Mock()
        self.handler = ConfigFileHandler('/etc/overseer/config.yaml', self.callback)

    def test_modified_matching_file(self):
        self.handler.on_modified(FileModifiedEvent('/etc/overseer/config.yaml'))
        self.callback.assert_called_once()

    def test_other_file_ignored(self):
        self.handler.on_modified(FileModifiedEvent('/etc/overseer/other.yaml'))
        self.handler.on_created(FileCreatedEvent('/etc/overseer/config.yaml.swp'))
        self.callback.assert_not_called()

    def test_atomic_rename_detected(self):
        self.handler.on_moved(FileMovedEvent('/etc/overseer/.config.tmp',
                                             '/etc/overseer/config.yaml'))
        self.callback.assert_called_once()


class TestConfigWatcher:
    """测试ConfigWatcher类"""

    def setup_method(self):
        self.temp_file = tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False)
        self.temp_file.write(CONFIG_CONTENT)
        self.temp_file.close()

        self.config_manager = ConfigManager(self.temp_file.name)
        self.config_manager.load_config()
        self.config_watcher = ConfigWatcher(self.config_manager)

    def teardown_method(self):
        self.config_watcher.stop_watching()
        if os.path.exists(self.temp_file.name):
            os.unlink(self.temp_file.name)

    def write(self, content):
        with open(self.temp_file.name, 'w', encoding='utf-8') as f:
            f.write(content)
        bump_mtime(self.temp_file.name)

    def test_unchanged_file_skipped(self):
        callback = Mock()
        self.config_watcher.add_change_callback(callback)
        self.config_watcher.on_config_changed()
        callback.assert_not_called()

    def test_valid_change_invokes_callbacks(self):
        callback = Mock()
        self.config_watcher.add_change_callback(callback)
        self.write(UPDATED_CONTENT)

        self.config_watcher.on_config_changed()

        callback.assert_called_once()
        old_config, new_config = callback.call_args.args
        assert len(old_config['targets']) == 1
        assert len(new_config['targets']) == 2
        assert [t.id for t in self.config_manager.targets] == ['web', 'dns']

    def test_invalid_change_keeps_old_config(self):
        callback = Mock()
        self.config_watcher.add_change_callback(callback)
        self.write("targets:\n  - id: web\n    probe_kind: gopher\n")

        self.config_watcher.on_config_changed()

        callback.assert_not_called()
        assert self.config_watcher.reload_failures == 1
        assert [t.id for t in self.config_manager.targets] == ['web']

    def test_failing_callback_does_not_stop_others(self):
        broken = Mock(side_effect=RuntimeError('boom'))
        healthy = Mock()
        self.config_watcher.add_change_callback(broken)
        self.config_watcher.add_change_callback(healthy)
        self.write(UPDATED_CONTENT)

        self.config_watcher.on_config_changed()

        healthy.assert_called_once()

    def test_remove_callback(self):
        callback = Mock()
        self.config_watcher.add_change_callback(callback)
        self.config_watcher.remove_change_callback(callback)
        self.write(UPDATED_CONTENT)

        self.config_watcher.on_config_changed()
        callback.assert_not_called()

    def test_start_and_stop(self):
        self.config_watcher.start_watching()
        assert self.config_watcher.is_running()
        self.config_watcher.stop_watching()
        assert not self.config_watcher.is_running()

    def test_detects_file_write(self):
        callback = Mock()
        self.config_watcher.add_change_callback(callback)

        with self.config_watcher:
            time.sleep(0.2)
            self.write(UPDATED_CONTENT)
            deadline = time.monotonic() + 5
            while not callback.called and time.monotonic() < deadline:
                time.sleep(0.05)

        assert callback.called
        assert len(self.config_manager.targets) == 2
