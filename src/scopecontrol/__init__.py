"""

Telescope Connections

- Connection: a persisted definition of how to reach one telescope (ConnectionConfig). Definitions
  are validated by the ConnectionRegistry, which also hands out TCP ports to remote connections and
  binds shortcut slots.
- Client: the running transport for one connection. Every client implements ClientProtocol:
  virtual, direct serial (LX200, NexStar), TCP relay, driver bus (INDI) and Alpaca.
- Conduit: a non-blocking, bi-directional byte channel (serial port, socket, process) used by the clients.
- Driver bus: INDI servers reached through PyIndi. A connection to a server is shared by the
  clients of the devices on it, and closed when the last one stops. Local drivers run in one
  driver server process that is started on first use.
- ConnectionSupervisor: starts and stops clients for registered connections and polls them all
  on each tick(). Clients of the driver bus are staged until their device defines coordinates.
- Persistence: the connections file and the device model catalog are configobj files with a version.
  Files of another version are backed up and replaced, never fatal.


## Threading

Everything runs on the host's update thread. The host calls ConnectionSupervisor.tick() regularly
(e.g. once per frame); each client does a bounded amount of I/O and returns. The registry, the supervisor,
the driver bus service and the clients must only be used from the thread that calls tick().

The one other thread is PyIndi's listener for each driver bus connection. It only copies what the
server reports into the connection's queue; the updates are applied by the connection's pump() on the
update thread. Connecting to a driver server waits for at most a second.

Events fired by the driver bus during a tick are queued and delivered at the end of that tick, so
handlers can start and stop connections without disturbing the poll.

"""
