# netassist

A small assistant for debugging network peers. It provides:

- a **TCP server** (`TcpServerEx`) that answers every chunk a client sends,
  by default echoing it back;
- a **TCP push server** (`TcpServer`) that keeps track of connected clients
  and lets you send data to them and read their replies;
- a **UDP server** (`UDPServer`) that answers datagrams, optionally joined to
  a multicast group, with source-specific filtering where the platform
  supports it;
- a **JSON web API** (Flask) over in-memory object and user stores, handy as
  a stand-in backend while testing clients.

## Installing

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running the service

```
netassist
```

This starts the TCP echo server (port 10000 by default), the UDP echo
server (port 9999 by default) and the web API (port 8080 by default), then
waits for an interrupt or a termination signal, at which point everything is
shut down and `End...` is printed. A server that fails to start is logged
and skipped; the others keep running.

Options:

- `--config PATH` — configuration file. Without it, `conf/app.conf` is read
  if it exists; otherwise the defaults below are used.
- `--log-file PATH` — log file, rotated at midnight
  (default `./logs/net-assist.log`).

The configuration file holds `key = value` lines; `#` and `;` start
comments, values may be quoted, and `[section]` headers are allowed. The
`runmode` key (default `dev`) selects a section whose values take precedence
over the top-level ones.

| Setting              | Default | Meaning                                        |
|----------------------|---------|------------------------------------------------|
| `tcp_server_port`    | 10000   | TCP listening port                             |
| `udp_server_port`    | 9999    | UDP listening port                             |
| `udp_multicast_ip`   | (none)  | multicast group to join                        |
| `udp_interface_name` | (none)  | network interface used for the multicast group |
| `udp_source_ips`     | (none)  | comma-separated source addresses to filter on  |
| `httpaddr`           | (all)   | address the web API listens on                 |
| `httpport`           | 8080    | port the web API listens on                    |
| `runmode`            | dev     | section whose settings take precedence         |

The same pieces are available from `netassist.service`: `load_settings(path)`
returns a `ServiceSettings`, `parse_source_ips(text)` splits a comma-separated
list, and `Service(settings)` with `start()` and `stop()` runs the TCP and UDP
servers together. `tcp_message_handler` and `udp_message_handler` log the data
they receive and echo it back.

## Using it as a library

### TCP

```python
from netassist.tcp import TcpServerEx

server = TcpServerEx()
server.start(10000, "tcp", lambda addr, data: data.upper())
print(server.address())   # (host, port)
...
server.stop()
```

`start()` binds on all interfaces and accepts clients in background threads.
Port 0 picks a free port; `address()` reports it. A network other than
`tcp` or `udp` raises `ValueError`, and `udp` raises `OSError`, as it is not
a stream network. Without a handler, data is echoed back unchanged.

`TcpServer` accepts clients the same way and lets you push data to them. A
client is picked by the first connected address (`host:port`) that contains
the given text:

- `send_data(addr, data)` sends `data` plus a newline;
- `send_and_receive(addr, data)` also returns the client's reply, or `b""`
  if none arrives within half a second;
- `send_data_ex(params)` takes a list of `MultiSendParam(addr, data)`, talks
  to all matching clients concurrently and returns one `MultiSendResult`
  (`addr`, `resp`, `error`) per parameter, in order.

An unknown address raises `AddressNotFoundError` (or is reported in the
result's `error` for `send_data_ex`).

### UDP and multicast

```python
from netassist.udp import UDPConfig, UDPServer, send_multicast

server = UDPServer()
server.start(UDPConfig(port=9999), lambda addr, data: data, True)
server.send_data(b"hello", "127.0.0.1:9000")
...
server.stop()

send_multicast("239.0.0.1", 9999, "hello")
```

The handler receives the sender's address and the datagram; a non-empty
return value is sent back to the sender. `send_data` queues a `SendCommand`
that the sender thread delivers when the server was started with
`with_sender=True`; when the queue (`channel_size`, default 1024) is full
the message is dropped with a warning. A port outside 1–65535 raises
`ValueError`. `buffer_size` defaults to 1024 bytes.

Setting `multicast_ip` binds to that group and joins it, on the interface
named by `interface_name` if given; `source_ips` restricts the group to
those IPv4 sources. `send_multicast_with_interface(multicast_ip, port,
message, local_ip)` sends from a chosen local address. Failures to join or
send to a group raise `MulticastError`.

### Web API

```python
from netassist.models import ObjectStore, UserStore
from netassist.web import create_app

app = create_app(ObjectStore(), UserStore())
app.run()
```

Routes live under `/v1`:

- `/v1/object` — `GET` lists objects, `POST` creates one and returns its
  `ObjectId`; `/v1/object/<id>` supports `GET`, `PUT` (updates the score)
  and `DELETE`.
- `/v1/user` — `GET` lists users, `POST` creates one and returns its `uid`;
  `/v1/user/<uid>` supports `GET`, `PUT` (copies non-empty fields) and
  `DELETE`; `/v1/user/login?username=...&password=...` answers
  `"login success"` or `"user not exist"`; `/v1/user/logout` answers
  `"logout success"`.

Missing records are reported as a JSON string such as
`"ObjectId Not Exist"`. The stores start with two sample objects and one
sample user (`astaxie`); pass `seed=False` for empty stores. Used directly,
the stores raise `NotFoundError` for unknown ids.

## What it does not do

- The object and user stores live in memory only; nothing is saved between
  runs.
- Login only checks the user name and password; there are no sessions, and
  logout keeps no state.
- Replies to TCP and UDP traffic come from the handlers given in code; the
  `netassist` command always echoes.