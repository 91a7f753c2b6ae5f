# urunc

Building blocks for a container runtime that starts unikernels instead of
ordinary Linux processes. The package targets Linux and has no dependencies
outside the standard library. Everything logs through the standard
`logging` logger named `"urunc"`.

## Modules

- `urunc.constants`: fixed values. These are the tap address
  (`STATIC_NETWORK_TAP_IP`, `172.16.1.1`) and unikernel address
  (`STATIC_NETWORK_UNIKERNEL_IP`, `172.16.1.2`) used for static networking,
  the template `DYNAMIC_NETWORK_TAP_IP` (`172.16.X.2`), and
  `TIMESTAMP_TARGET_FILE`.
- `urunc.log_forward`: relays JSON log lines from a child process.
  - `process_entry(text, logger)` decodes one line of the form
    `{"level": ..., "msg": ...}` and logs it at the matching level. Empty
    lines are ignored. Lines that cannot be decoded are reported as errors on
    the `"urunc"` logger.
  - `forward_logs(log_pipe, logger=None)` reads a binary pipe on a background
    thread and closes the pipe when it ends. It returns a
    `concurrent.futures.Future`, which resolves to `None` or carries the
    `OSError` raised while reading.
  - `StructuredJSONFormatter` renders records as single-line JSON with
    `time`, `level` and `msg`. It adds any mapping found in the record's
    `fields` attribute. It splits messages of the form `name[pid]: text`
    into a `subsystem` and a `msg`.
- `urunc.cli_utils`: helpers for a command-line front end.
  - `check_args(command_name, args, expected, check_type)` checks the
    argument count against `ArgCheck.EXACT`, `ArgCheck.MIN` or `ArgCheck.MAX`.
    On failure it prints `Incorrect Usage.` and raises `ValueError`.
  - `revise_root_dir(root)` makes a path absolute. It rejects `/`.
  - `config_logging(debug, log_format, log_file)` configures the logger.
    `log_format` is `"text"`, `"json"` or `""`. `debug=True` also adds a
    syslog handler on `/dev/log`. `log_file` appends to a file.
  - `logging_to_stderr()` reports whether the logger writes to standard
    error.
  - `FatalWriter` is an error stream that logs what is written to it.
  - `new_sock_pair(name)` returns a connected `(parent, child)` pair of Unix
    stream sockets.
  - `runc_exec(argv)` replaces the current process with `runc`.
  - `fatal(err)` and `fatal_with_code(err, ret)` report an error and exit.
  - `EmptyContainerIDError` is raised where a container ID is required but
    empty.
- `urunc.netdev`: network plumbing inside the container's network
  namespace, done with the `ip` and `tc` tools.
  - `Link`, `Interface` and `UnikernelNetworkInfo` are dataclasses that
    describe a link, the addressing details handed to the unikernel, and the
    result of a setup.
  - `link_by_name(name)` looks up a link. It raises `LinkNotFoundError` if
    the link is absent.
  - `get_tap_index()` counts the tap devices. More than 255 is an error.
  - `create_tap_device(name, mtu, owner_uid, owner_gid)` creates a tap
    device.
  - `ensure_eth0_exists()` checks that `eth0` is present.
  - `get_interface_info(iface)` reads the IPv4 address, mask, default
    gateway and MAC address of an interface.
  - `mask_to_decimal(mask)` renders a mask in dotted decimal.
  - `add_ingress_qdisc(link)` and `add_redirect_filter(source, target)` add
    the traffic-control rules.
  - `network_setup(...)` creates and configures a tap device. It returns
    `None` when `eth0` is missing.
  - `cleanup(tap_device)` removes the tap device and its filters and qdiscs.
  - Failed commands raise `NetworkError`.
- `urunc.managers`: the two network strategies.
  - `new_network_manager("dynamic" | "static")` returns a `NetworkManager`.
    Any other type raises `ValueError`.
  - `DynamicNetwork` mirrors traffic between `eth0` and a new `tap0_urunc`.
    It refuses to run when a tap device already exists.
  - `StaticNetwork` gives the tap `172.16.1.1/24` and calls
    `set_nat_rule(iface, source_ip)`. That function enables IP forwarding
    and adds an `iptables` MASQUERADE rule.

## Example

```python
from urunc.managers import new_network_manager
from urunc.netdev import cleanup

manager = new_network_manager("dynamic")
info = manager.network_setup(0, 0)
print(info.tap_device, info.eth_device.ip, info.eth_device.mask)
cleanup(info.tap_device)
```

Network setup needs root privileges (or `CAP_NET_ADMIN`) and the `ip`, `tc`
and, for static networking, `iptables` tools.

```python
import logging
from urunc.log_forward import forward_logs

done = forward_logs(pipe_reader, logging.getLogger("urunc"))
done.result()
```

## What the package does not do

The package has no `urunc` command. It does not create, start, kill or
delete containers, and it does not launch hypervisors. It offers no capture
of start-up timestamps. `TIMESTAMP_TARGET_FILE` is only a constant. The
pieces above are meant to be used by a runtime front end that supplies
these parts.

## Running the tests

Install the `test` extra and run `pytest`.