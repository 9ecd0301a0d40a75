import base64
import socketserver
import threading

CRLF = b"\r\n"


class MockPOP3Handler(socketserver.StreamRequestHandler):
    """
    A minimal POP3 (RFC 1939) mock server handler for testing purposes.
    Supports USER/PASS, AUTH XOAUTH2, STAT, LIST, UIDL, RETR, DELE, NOOP, RSET and QUIT.
    Deletions only take effect on QUIT, like a real server.
    """

    def handle(self):
        self.send_line(b"+OK Mock POP3 Server Ready")
        self.user = None
        self.authenticated = False
        self.marked = set()

        while True:
            try:
                line = self.rfile.readline()
                if not line:
                    break
                line = line.decode("utf-8").strip()
                if not line:
                    continue

                parts = line.split(" ", 1)
                cmd = parts[0].upper()
                args = parts[1] if len(parts) > 1 else ""
                self.server.commands.append(line if cmd != "PASS" else "PASS ****")

                if cmd == "QUIT":
                    self.commit_deletions()
                    self.send_line(b"+OK Bye")
                    break

                if cmd == "USER":
                    self.user = args
                    self.send_line(b"+OK send PASS")
                elif cmd == "PASS":
                    if self.user and args == self.server.password:
                        self.authenticated = True
                        self.send_line(b"+OK Logged in")
                    else:
                        self.send_line(b"-ERR [AUTH] Invalid credentials")
                elif cmd == "AUTH":
                    self.handle_auth(args)
                elif not self.authenticated:
                    self.send_line(b"-ERR Not authenticated")
                else:
                    self.handle_transaction(cmd, args)

            except Exception:
                break

    def handle_auth(self, args):
        mech, _, initial = args.partition(" ")
        if mech.upper() != "XOAUTH2":
            self.send_line(b"-ERR Unsupported mechanism")
            return
        try:
            decoded = base64.b64decode(initial).decode("utf-8")
        except Exception:
            self.send_line(b"-ERR Malformed XOAUTH2 response")
            return
        if f"auth=Bearer {self.server.oauth2_token}\x01" in decoded:
            self.authenticated = True
            self.send_line(b"+OK Authenticated")
        else:
            # Real servers send the error as a SASL challenge first
            self.send_line(b"+ eyJzdGF0dXMiOiI0MDEifQ==")
            self.rfile.readline()
            self.send_line(b"-ERR [AUTH] Invalid token")

    def handle_transaction(self, cmd, args):
        msgs = self.server.messages

        transient = self.server.transient_failures.get(cmd, 0)
        if transient:
            self.server.transient_failures[cmd] = transient - 1
            self.send_line(b"-ERR [SYS/TEMP] Server busy, try again later")
            return

        if cmd == "STAT":
            live = self.live_indices()
            total = sum(len(msgs[i - 1]) for i in live)
            self.send_line(f"+OK {len(live)} {total}".encode())

        elif cmd == "LIST":
            if args:
                index = self.parse_index(args)
                if index is None:
                    return
                self.send_line(f"+OK {index} {len(msgs[index - 1])}".encode())
                return
            live = self.live_indices()
            self.send_line(f"+OK {len(live)} messages".encode())
            for i in live:
                self.send_line(f"{i} {len(msgs[i - 1])}".encode())
            self.send_line(b".")

        elif cmd == "UIDL":
            self.send_line(b"+OK")
            for i in self.live_indices():
                self.send_line(f"{i} uid-{i}".encode())
            self.send_line(b".")

        elif cmd == "RETR":
            index = self.parse_index(args)
            if index is None:
                return
            if index in self.server.fail_retr:
                self.send_line(b"-ERR Message unavailable")
                return
            content = msgs[index - 1]
            self.send_line(f"+OK {len(content)} octets".encode())
            lines = content.split(CRLF)
            if content.endswith(CRLF):
                lines = lines[:-1]
            for body_line in lines:
                # Byte-stuff lines starting with the terminator character
                if body_line.startswith(b"."):
                    body_line = b"." + body_line
                self.wfile.write(body_line + CRLF)
            self.send_line(b".")

        elif cmd == "DELE":
            index = self.parse_index(args)
            if index is None:
                return
            if index in self.server.fail_dele:
                self.send_line(b"-ERR Cannot delete message")
                return
            self.marked.add(index)
            self.send_line(f"+OK message {index} deleted".encode())

        elif cmd == "RSET":
            self.marked.clear()
            self.send_line(b"+OK")

        elif cmd == "NOOP":
            self.send_line(b"+OK")

        else:
            self.send_line(b"-ERR Command not recognized")

    def live_indices(self):
        return [i for i in range(1, len(self.server.messages) + 1) if i not in self.marked]

    def parse_index(self, args):
        try:
            index = int(args.split()[0])
        except (IndexError, ValueError):
            self.send_line(b"-ERR Invalid message number")
            return None
        if index < 1 or index > len(self.server.messages) or index in self.marked:
            self.send_line(b"-ERR No such message")
            return None
        return index

    def commit_deletions(self):
        with self.server.lock:
            self.server.messages[:] = [
                m for i, m in enumerate(self.server.messages, start=1) if i not in self.marked
            ]
        self.marked.clear()

    def send_line(self, data):
        self.wfile.write(data + CRLF)
        self.wfile.flush()


class MockPOP3Server(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address, request_handler_class, messages=None, password="pass", oauth2_token=None):
        super().__init__(server_address, request_handler_class)
        self.messages = list(messages or [])
        self.password = password
        self.oauth2_token = oauth2_token
        self.lock = threading.Lock()
        self.commands = []
        # Failure injection: message numbers whose RETR / DELE answer -ERR,
        # and per-command counts of [SYS/TEMP] replies to send first
        self.fail_retr = set()
        self.fail_dele = set()
        self.transient_failures = {}


def start_server_thread(port=0, messages=None, **kwargs):
    server = MockPOP3Server(("localhost", port), MockPOP3Handler, messages, **kwargs)
    t = threading.Thread(target=server.serve_forever)
    t.daemon = True
    t.start()
    return t, server
