import threading

import pytest

from nezhadash.streams import IOStreamWrapper, MessageType, SafeWebSocketConn


class FakeStream:
    def __init__(self, messages):
        self.messages = list(messages)
        self.sent = []

    def recv(self):
        if not self.messages:
            raise EOFError
        return self.messages.pop(0)

    def send(self, data):
        self.sent.append(data)


class FakeSocket:
    def __init__(self, messages):
        self.messages = list(messages)
        self.written = []
        self.closed = False
        self._lock = threading.Lock()

    def read_message(self):
        if not self.messages:
            raise ConnectionError("closed")
        return self.messages.pop(0)

    def write_message(self, message_type, data):
        with self._lock:
            self.written.append((message_type, data))

    def close(self):
        self.closed = True


def test_wrapper_reads_in_pieces():
    wrapper = IOStreamWrapper(FakeStream([b"hello", b"world"]))
    assert wrapper.read(3) == b"hel"
    assert wrapper.read(3) == b"lo"
    assert wrapper.read(10) == b"world"
    assert wrapper.read(10) == b""


def test_wrapper_read_all_of_next_chunk():
    wrapper = IOStreamWrapper(FakeStream([b"abc", b"de"]))
    assert wrapper.read() == b"abc"
    assert wrapper.read() == b"de"


def test_wrapper_skips_empty_messages():
    wrapper = IOStreamWrapper(FakeStream([b"", b"data"]))
    assert wrapper.read(8) == b"data"


def test_wrapper_write_sends_message():
    stream = FakeStream([])
    wrapper = IOStreamWrapper(stream)
    assert wrapper.write(b"payload") == len(b"payload")
    assert stream.sent == [b"payload"]


def test_wrapper_propagates_recv_errors():
    class Broken:
        def recv(self):
            raise ConnectionResetError("gone")

        def send(self, data):
            pass

    with pytest.raises(ConnectionResetError):
        IOStreamWrapper(Broken()).read(4)


def test_wrapper_wait_and_close():
    wrapper = IOStreamWrapper(FakeStream([]))
    assert wrapper.wait(timeout=0.01) is False
    assert wrapper.closed is False
    wrapper.close()
    wrapper.close()
    assert wrapper.wait(timeout=0.01) is True
    assert wrapper.closed is True


def test_wrapper_wait_unblocked_from_another_thread():
    wrapper = IOStreamWrapper(FakeStream([]))
    timer = threading.Timer(0.05, wrapper.close)
    timer.start()
    assert wrapper.wait(timeout=5) is True
    timer.join()


def test_wrapper_context_manager_closes():
    with IOStreamWrapper(FakeStream([])) as wrapper:
        assert wrapper.closed is False
    assert wrapper.closed is True


def test_socket_write_is_binary():
    sock = FakeSocket([])
    conn = SafeWebSocketConn(sock)
    assert conn.write(b"xyz") == 3
    assert sock.written == [(MessageType.BINARY, b"xyz")]


def test_socket_write_message_keeps_type():
    sock = FakeSocket([])
    conn = SafeWebSocketConn(sock)
    conn.write_message(MessageType.TEXT, b"hi")
    assert sock.written == [(MessageType.TEXT, b"hi")]


def test_socket_text_message_gets_zero_prefix():
    conn = SafeWebSocketConn(FakeSocket([(MessageType.TEXT, b"ls")]))
    assert conn.read(16) == b"\x00ls"


def test_socket_binary_message_read_in_pieces():
    conn = SafeWebSocketConn(FakeSocket([(MessageType.BINARY, b"abcdef"), (MessageType.BINARY, b"g")]))
    assert conn.read(4) == b"abcd"
    assert conn.read(4) == b"ef"
    assert conn.read(4) == b"g"


def test_socket_read_error_propagates():
    conn = SafeWebSocketConn(FakeSocket([]))
    with pytest.raises(ConnectionError):
        conn.read(4)


def test_socket_concurrent_writes_all_delivered():
    sock = FakeSocket([])
    conn = SafeWebSocketConn(sock)
    threads = [threading.Thread(target=conn.write, args=(bytes([i]),)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(data for _, data in sock.written) == [bytes([i]) for i in range(20)]


def test_socket_close_delegates():
    sock = FakeSocket([])
    with SafeWebSocketConn(sock):
        pass
    assert sock.closed is True