# Copyright (c) 2009-2010 Six Apart Ltd.
# All rights reserved.
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# * Redistributions of source code must retain the above copyright notice,
#   this list of conditions and the following disclaimer.
#
# * Redistributions in binary form must reproduce the above copyright notice,
#   this list of conditions and the following disclaimer in the documentation
#   and/or other materials provided with the distribution.
#
# * Neither the name of Six Apart Ltd. nor the names of its contributors may
#   be used to endorse or promote products derived from this software without
#   specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

from http.client import responses
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import json
import logging
import os
import threading
import time
from unittest import mock

import pycurl


def log():
    import sys
    logging.basicConfig(level=logging.DEBUG, stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s")


class FakeCurl(object):

    """A stand-in for `pycurl.Curl` that records its options and replays a
    scripted response through them.

    Like the real handle, it refuses `getinfo()` while it's performing, that
    is while its callbacks are running.

    """

    def __init__(self):
        self.options = {}
        self.info = {pycurl.REDIRECT_COUNT: 0, pycurl.RESPONSE_CODE: 0}
        self.done = False
        self.closed = False
        self.performing = False

    def setopt(self, option, value):
        self.options[option] = value
        if option == pycurl.URL:
            self.info[pycurl.EFFECTIVE_URL] = value

    def getinfo(self, option):
        if self.performing:
            raise pycurl.error('cannot invoke getinfo() - perform() is currently running')
        return self.info.get(option, 0)

    def close(self):
        self.closed = True

    def feed(self, line):
        data = line.encode('iso-8859-1')
        consumed = self.options[pycurl.HEADERFUNCTION](data)
        if consumed != len(data):
            raise AssertionError('Header callback consumed %r of %d bytes'
                % (consumed, len(data)))

    def play(self, hops, body=b''):
        """Feeds the header blocks of each hop in `hops`, a sequence of
        ``(url, status, [(name, value), ...])`` tuples, then `body`.

        Redirect hops need a ``Location`` header to be followed, as with a
        real transport.

        """
        self.performing = True
        try:
            for url, status, headers in hops:
                self.feed('HTTP/1.1 %d %s\r\n' % (status, responses[status]))
                for header in headers:
                    self.feed('%s: %s\r\n' % header)
                self.feed('\r\n')
            self.options[pycurl.WRITEDATA].write(body)
        finally:
            self.performing = False
        if hops:
            url, status, headers = hops[-1]
            self.info[pycurl.REDIRECT_COUNT] = len(hops) - 1
            self.info[pycurl.EFFECTIVE_URL] = url
            self.info[pycurl.RESPONSE_CODE] = status


class FakeMulti(object):

    """A stand-in for `pycurl.CurlMulti` completing one transfer per
    `perform()` call, most recently added first.

    Parameter `outcomes` maps each URL to either a ``(hops, body)`` pair to
    replay (see `FakeCurl.play()`), or a ``(code, message)`` error.

    """

    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.handles = []
        self.removed = []
        self.succeeded = []
        self.failed = []
        self.performs = 0
        self.selects = 0
        self.waits = []
        # Milliseconds until the transport wants performing again, and the
        # sockets it watches.
        self.timeout_ms = 10
        self.fds = ([1], [], [])
        self.closed = False

    def add_handle(self, curl):
        self.handles.append(curl)

    def remove_handle(self, curl):
        self.handles.remove(curl)
        self.removed.append(curl)

    def perform(self):
        self.performs += 1
        running = [curl for curl in self.handles if not curl.done]
        if running:
            curl = running[-1]
            curl.done = True
            outcome = self.outcomes[curl.options[pycurl.URL]]
            if isinstance(outcome[0], int):
                code, message = outcome
                self.failed.append((curl, code, message))
            else:
                hops, body = outcome
                curl.play(hops, body)
                self.succeeded.append(curl)
        return pycurl.E_MULTI_OK, max(len(running) - 1, 0)

    def timeout(self):
        return self.timeout_ms

    def fdset(self):
        return self.fds

    def select(self, timeout):
        self.selects += 1
        self.waits.append(timeout)
        return 1

    def info_read(self):
        succeeded, failed = self.succeeded, self.failed
        self.succeeded, self.failed = [], []
        return 0, succeeded, failed

    def close(self):
        self.closed = True


class RouteHandler(BaseHTTPRequestHandler):

    protocol_version = 'HTTP/1.1'

    def log_message(self, format, *args):
        pass

    def send_body(self, status, body, headers=()):
        self.send_response(status)
        for name, value in headers:
            self.send_header(name, value)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        if self.command != 'HEAD':
            self.wfile.write(body)

    def do_GET(self):
        path = self.path
        if path == '/ok':
            self.send_body(200, b'ok', [('X-Foo', 'bar')])
        elif path == '/redirect':
            self.send_body(301, b'moved', [('Location', '/target'),
                ('X-Redirected', 'yes')])
        elif path == '/target':
            self.send_body(200, b'target', [('X-Foo', 'bar')])
        elif path.startswith('/chain/'):
            remaining = int(path[len('/chain/'):])
            if remaining:
                self.send_body(302, b'', [('Location', '/chain/%d' % (remaining - 1)),
                    ('X-Hop', str(remaining))])
            else:
                self.send_body(200, b'end of chain', [('X-Final', 'yes')])
        elif path == '/repeat':
            self.send_body(200, b'', [('X-Dup', 'one'), ('X-Dup', 'two')])
        elif path == '/slow':
            time.sleep(2.5)
            try:
                self.send_body(200, b'too late')
            except (BrokenPipeError, ConnectionResetError):
                pass
        else:
            self.send_body(404, b'not found')

    def do_HEAD(self):
        self.do_GET()

    def do_POST(self):
        length = int(self.headers.get('Content-Length') or 0)
        received = self.rfile.read(length)
        body = json.dumps({
            'method': self.command,
            'body': received.decode('utf-8'),
            'content-type': self.headers.get('Content-Type'),
        }).encode('utf-8')
        self.send_body(200, body, [('Content-Type', 'application/json')])

    do_PUT = do_POST
    do_PATCH = do_POST
    do_DELETE = do_POST


class LocalServer(object):

    """A threaded HTTP server on localhost serving `RouteHandler`."""

    def start(self):
        self.httpd = ThreadingHTTPServer(('127.0.0.1', 0), RouteHandler)
        self.thread = threading.Thread(target=self.httpd.serve_forever)
        self.thread.daemon = True
        self.thread.start()
        # Never send these requests through a proxy from the environment.
        self.environ = mock.patch.dict(os.environ,
            {'no_proxy': '127.0.0.1', 'NO_PROXY': '127.0.0.1'})
        self.environ.start()

    def stop(self):
        self.environ.stop()
        self.httpd.shutdown()
        self.httpd.server_close()
        self.thread.join()

    def url(self, path):
        return 'http://127.0.0.1:%d%s' % (self.httpd.server_address[1], path)
