# ovmwin

`ovmwin` is a library for running a Linux virtual machine as a WSL2
distribution on Windows. It provides the building blocks around such a
machine:

| Module | What it does |
| --- | --- |
| `ovmwin.logger` | Rotating log files (`new`, `new_with_child_process`, `new_only_create`, `close_all`, `Logger`) |
| `ovmwin.types` | `Version` (the `versions.json` record) and the option records `BasicOpt`, `InitOpt`, `RunOpt`, `MigrateOpt` |
| `ovmwin.channel` | One-slot, process-wide signals: WSL updated, WSL config updated, WSL shut down |
| `ovmwin.fileutil` | `exists`, `touch`, `sha256_file` |
| `ovmwin.misc` | `data_size` (per-machine data disk size), `random_string`, `contains_string` |
| `ovmwin.execution` | `silent` (run a command with output discarded), `escape_arg`, `silent_popen_kwargs` |
| `ovmwin.exiting` | `register_exit_func`, `run_exit_funcs`, `exit` |
| `ovmwin.paths` | Windows locations from the environment; `host_path_to_wsl` |
| `ovmwin.ports` | `find_usable_port` |
| `ovmwin.process` | `wait_bind_pid`: wait until a bound process exits or a cancel event is set |
| `ovmwin.request` | `get` and `download` (skips the download when the SHA-256 already matches) |
| `ovmwin.podman` | `ready`: poll the podman API until it answers |
| `ovmwin.event` | Progress events (`InitEvent`, `RunEvent`) sent as HTTP GET requests over a named pipe |
| `ovmwin.wslfind` | `find`: the path of `wsl.exe` |
| `ovmwin.wslconfig` | `WSLConfig`: read `~/.wslconfig`, detect and comment out incompatible keys, open it in Notepad |
| `ovmwin.distro` | Drive WSL distributions: import, terminate, unregister, sync, mount/unmount VHDX, move, stop, launch, host endpoint |
| `ovmwin.winsys` | `copy_file`, `support_wsl2`, `run_once` (registry RunOnce), `is_supported_virtualization` |
| `ovmwin.check` | The system requirement checks: WSL version, features, virtualization, `.wslconfig` |
| `ovmwin.vhdx` | `create` a sparse dynamic VHDX, `read_virtual_size` |
| `ovmwin.update` | `Updater`: replace the data disk and the rootfs distro when their versions change |
| `ovmwin.migrate` | `MigrateContext`: move a machine's images to another directory; `reset_data`, `setup_log_path` |

## Requirements

Python 3.10 or later. The functions that run `wsl.exe`, PowerShell or touch
the registry need Windows with WSL2; `support_wsl2` requires build 19044 or
later. The pure helpers (paths, versions, log files, `.wslconfig` parsing,
VHDX writing) work on any platform.

## Examples

Open a log, work out the data disk size for a machine and convert a host
path to its WSL form:

```python
from ovmwin import logger, misc, paths

log = logger.new("C:\\ovm\\logs", "demo")
log.info("starting")

size = misc.data_size("demo")
wsl_path = paths.host_path_to_wsl("C:\\Users\\me\\test.txt")
# '/mnt/c/Users/me/test.txt'

log.close()
```

`logger.new` moves `demo.log` to `demo.2.log` (and so on, keeping five
files) before opening a fresh `demo.log`.

Read and write the versions file:

```python
from ovmwin.types import Version

v = Version.from_json('{"rootfs": "1.0", "data": "1.0"}')
text = v.to_json()  # '{"rootfs":"1.0","data":"1.0"}'
```

Look for settings in `.wslconfig` that conflict with the virtual machine:

```python
from ovmwin import logger
from ovmwin.wslconfig import WSLConfig

log = logger.new("C:\\ovm\\logs", "config")
config = WSLConfig(log)
incompatible = config.exist_incompatible()  # e.g. ['kernel', 'localhostForwarding']
if incompatible:
    config.fix()  # comments the keys out
```

Check whether a distribution is registered and running before syncing its
disk:

```python
from ovmwin import distro, logger

log = logger.new("C:\\ovm\\logs", "demo")
try:
    distro.safe_sync_disk(log, "ovm-demo")
except distro.DistroNotExistError:
    log.info("distro is not registered")
except distro.DistroNotRunningError:
    log.info("distro is not running")
```

Create a data disk and read its size back:

```python
from ovmwin import misc, vhdx

vhdx.create("C:\\ovm\\images\\data.vhdx", misc.data_size("demo"))
vhdx.read_virtual_size("C:\\ovm\\images\\data.vhdx")
```

Bring the images up to date before a start:

```python
from ovmwin import logger
from ovmwin.types import RunOpt, Version
from ovmwin.update import Updater

opt = RunOpt(
    name="demo",
    distro_name="ovm-demo",
    image_dir="C:\\ovm\\images",
    rootfs_path="C:\\ovm\\rootfs.tar",
    logger=logger.new("C:\\ovm\\logs", "demo"),
)
Updater(opt, Version(rootfs="1.0", data="1.0")).check_and_replace()
```

Move a machine's images to a new directory:

```python
from ovmwin.migrate import MigrateContext
from ovmwin.types import MigrateOpt

opt = MigrateOpt(
    name="demo",
    log_path="C:\\ovm\\logs",
    old_image_dir="D:\\old",
    new_image_dir="E:\\new",
)
ctx = MigrateContext(opt)
ctx.setup()   # makes the log directory, opens the log, creates new_image_dir
ctx.start()   # stops the distro, copies data.vhdx and versions.json, moves the distro
```

After the move the data version in the new `versions.json` is set to
`RESET`.

## What the package does not do

- It installs no command. There is no `init`, `run` or `migrate` program;
  the steps are called from Python.
- It runs no control server. `ovmwin.event` only sends events to a server
  that the controlling application provides; nothing here listens for
  requests to stop the machine, run commands in it, reboot, enable features
  or fix the WSL config.
- It does not enable Windows features, download or install WSL updates,
  or restart itself with administrator rights. `ovmwin.check` reports what
  is needed (through events and the `can_*` flags on `InitOpt`) and waits
  on `ovmwin.channel` for another part of the application to act.

## Testing

The test suite uses pytest, installed with the `test` extra:

```
pip install -e .[test]
pytest
```