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

"""

A `Transfer` is one registered HTTP exchange: the native `pycurl.Curl`
handle plus everything collected about it while it runs.

The transport calls back into the transfer once per received header line,
for *every* response in a redirect chain and not only the final one. The
native handle can't be queried while it's performing, so each transfer
follows the chain itself from the status lines and ``Location`` headers it
sees, and starts a fresh header set whenever a new hop begins. The response
finally assembled only carries the headers of the last hop.

"""

from io import BytesIO
import logging
from urllib.parse import urljoin

log = logging.getLogger(__name__)

HEADER_ENCODING = 'iso-8859-1'


def parse_status(line):
    """Returns the status code of HTTP status line `line`, or ``None`` if
    `line` isn't a status line."""
    if not line.startswith('HTTP/'):
        return None
    parts = line.split(None, 2)
    try:
        return int(parts[1])
    except (IndexError, ValueError):
        return None


class Transfer(object):

    """The state of a single transfer, keyed by its generated `identity`."""

    def __init__(self, identity, curl, url=None, debug=False):
        self.identity = identity
        self.curl = curl
        self.url = url
        # Redirect hop index -> URL visited at that hop. Hop 0 is the
        # original URL.
        self.locations = {}
        # Lower-cased header name -> list of values, for the current hop
        # only.
        self.headers = {}
        # Status of the header block being received.
        self.status = None
        self.hop = 0
        self.body = BytesIO()
        self.debug = BytesIO() if debug else None
        self.error = None
        self.closed = False

    def __repr__(self):
        return '<Transfer %s>' % self.identity

    def last_hop(self):
        """Returns the highest redirect hop index seen so far, or ``None``
        if no header has been received yet."""
        if not self.locations:
            return None
        return max(self.locations)

    def observe_hop(self, redirect_count, effective_url):
        """Records that the transfer is at redirect hop `redirect_count`
        for URL `effective_url`.

        If the hop is past any hop seen before, the headers collected so far
        belong to a superseded response and are discarded.

        """
        last = self.last_hop()
        if last is not None and redirect_count > last:
            log.debug('%s: redirect %d to %s, resetting headers',
                self.identity, redirect_count, effective_url)
            self.headers = {}
        self.locations[redirect_count] = effective_url

    def start_block(self, status):
        """Starts the header block of a response with status `status`.

        The block is a new hop when the previous block was a redirect
        carrying a ``Location``. Interim (1xx) responses are part of the
        hop they precede.

        """
        url = self.locations.get(self.hop, self.url)
        previous = self.status
        if previous is not None and 300 <= previous < 400 and 'location' in self.headers:
            self.hop += 1
            url = urljoin(url or '', self.headers['location'][-1])
        self.observe_hop(self.hop, url)
        self.status = status

    def add_header_line(self, line):
        """Adds one decoded header line to the current hop's headers.

        Lines without a colon (status lines and the blank line ending a
        header block) are ignored.

        """
        name, sep, value = line.partition(':')
        if not sep:
            return
        self.headers.setdefault(name.strip().lower(), []).append(value.strip())

    def header_callback(self, data):
        """Processes a raw header line delivered by the transport.

        Returns the number of bytes consumed, which must be the whole line:
        any other count makes the transport abort the transfer.

        """
        line = data.decode(HEADER_ENCODING)
        status = parse_status(line)
        if status is not None:
            self.start_block(status)
        else:
            self.add_header_line(line)
        return len(data)

    def settle(self, effective_url):
        """Records the URL the transport finally reports for the last hop,
        once the transfer is complete."""
        hop = self.last_hop()
        if hop is None:
            hop = 0
        self.locations[hop] = effective_url

    def debug_callback(self, debug_type, data):
        self.debug.write(data)

    def get_content(self):
        """Returns the response body received so far."""
        return self.body.getvalue()

    def get_debug_output(self):
        if self.debug is None or self.debug.closed:
            return None
        return self.debug.getvalue().decode(HEADER_ENCODING, 'replace')

    def response_headers(self):
        """Returns the current hop's headers as a mapping of lower-cased
        names to values, joining repeated headers with commas."""
        return dict((name, ', '.join(values))
            for name, values in self.headers.items())

    def close(self):
        """Releases the native handle and buffers. Safe to call repeatedly;
        only the first call does anything."""
        if self.closed:
            return
        self.closed = True
        self.curl.close()
        if self.debug is not None:
            self.debug.close()
