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

The cURL service knows how to turn httplib2-style request info into a
configured `pycurl.Curl` transfer, run that transfer on its own, and assemble
an `httplib2.Response` from what the transfer received.

The same service instance serves any number of transfers, both for single
requests (see `multihttp.client`) and for parallel ones (see
`multihttp.multi`). Call `reset()` to release every transfer it still holds.

"""

from functools import partial
from http.client import responses
import logging
import uuid

import httplib2
import pycurl

from multihttp.errors import (InvalidRequest, MalformedTransportInfo,
    ResponseError, TransferError)
from multihttp.transfer import Transfer

log = logging.getLogger(__name__)
transfer_log = logging.getLogger('multihttp.transfer')

BODY_METHODS = ('PATCH', 'POST', 'PUT')

# Transfer information written to the debug log after each transfer.
DEBUG_INFO = (
    ('effective_url', pycurl.EFFECTIVE_URL),
    ('response_code', pycurl.RESPONSE_CODE),
    ('redirect_count', pycurl.REDIRECT_COUNT),
    ('content_type', pycurl.CONTENT_TYPE),
    ('size_download', pycurl.SIZE_DOWNLOAD_T),
    ('namelookup_time', pycurl.NAMELOOKUP_TIME),
    ('connect_time', pycurl.CONNECT_TIME),
    ('total_time', pycurl.TOTAL_TIME),
)


def error_args(exc):
    """Returns the ``(code, message)`` pair carried by a `pycurl.error`."""
    args = exc.args
    code = args[0] if args and isinstance(args[0], int) else -1
    message = args[1] if len(args) > 1 else str(exc)
    return code, message


class Configuration(object):

    """Options applied to every transfer a `CurlService` creates.

    Parameter `debug` turns on capture of the transport's verbose output and
    debug logging of every request and response on the
    ``multihttp.transfer`` logger. Timeouts are in seconds; a
    `connect_timeout` of ``None`` uses `timeout`, and zero waits forever.
    `select_timeout` bounds how long a parallel run waits for activity
    before checking on its transfers again.

    """

    def __init__(self, debug=False, timeout=30, connect_timeout=None,
                 follow_redirects=True,
                 max_redirects=httplib2.DEFAULT_MAX_REDIRECTS,
                 select_timeout=1.0):
        self.debug = debug
        self.timeout = timeout
        if connect_timeout is None:
            connect_timeout = timeout
        self.connect_timeout = connect_timeout
        self.follow_redirects = follow_redirects
        self.max_redirects = max_redirects
        self.select_timeout = select_timeout


class CurlService(object):

    """Creates, runs and reads `Transfer` instances."""

    def __init__(self, configuration=None, curl_factory=pycurl.Curl):
        """Configures the service to create transfers with the given
        `Configuration`, or a default one.

        Parameter `curl_factory` is the callable used to create each native
        transfer handle.

        """
        if configuration is None:
            configuration = Configuration()
        self.configuration = configuration
        self.curl_factory = curl_factory
        # Transfers created and not yet released, by identity.
        self.transfers = {}

    def generate_identifier(self):
        # Never derived from the handle object itself: object ids are reused
        # once handles are collected.
        identity = uuid.uuid4().hex
        while identity in self.transfers:
            identity = uuid.uuid4().hex
        return identity

    def get_handle_identifier(self, curl):
        """Returns the identity stored on native handle `curl` by
        `create_handle()`."""
        identity = getattr(curl, 'handle_id', None)
        if identity is None:
            raise MalformedTransportInfo('Transfer handle %r has no identity' % (curl,))
        return identity

    def create_handle(self, reqinfo):
        """Creates a `Transfer` ready to be performed.

        Parameter `reqinfo` is a mapping of the arguments of an
        `httplib2.Http.request()` call: ``uri`` and optionally ``method``,
        ``headers`` and ``body``. If the request can't be configured, an
        `InvalidRequest` is raised.

        """
        uri, method, headers, body = self.parse_reqinfo(reqinfo)

        identity = self.generate_identifier()
        curl = self.curl_factory()
        curl.handle_id = identity
        transfer = Transfer(identity, curl, url=uri, debug=self.configuration.debug)
        try:
            self.set_options(transfer, uri)
            if self.configuration.debug:
                self.handle_debug_before(transfer, method, uri, headers, body)
            self.set_method(transfer, method, body)
            self.set_headers(transfer, headers)
        except (pycurl.error, TypeError, ValueError) as exc:
            transfer.close()
            log.error('Could not configure transfer for %s %s: %s', method, uri, exc)
            raise InvalidRequest('Could not configure transfer for %s %s: %s'
                % (method, uri, exc))

        self.transfers[identity] = transfer
        log.debug('Created transfer %s for %s %s', identity, method, uri)
        return transfer

    def parse_reqinfo(self, reqinfo):
        try:
            uri = reqinfo['uri']
        except (KeyError, TypeError):
            raise InvalidRequest('Request info %r has no uri' % (reqinfo,))
        if not isinstance(uri, str) or not uri:
            raise InvalidRequest('Request uri %r is not a URL' % (uri,))

        method = reqinfo.get('method') or 'GET'
        if not isinstance(method, str):
            raise InvalidRequest('Request method %r is not a string' % (method,))
        method = method.upper()

        headers = {}
        for name, value in (reqinfo.get('headers') or {}).items():
            if isinstance(value, (list, tuple)):
                value = ', '.join(value)
            headers[name.lower()] = value

        body = reqinfo.get('body')
        if body is None:
            body = b''
        elif isinstance(body, str):
            body = body.encode('utf-8')
        if 'content-length' not in headers:
            # Length in octets, not characters.
            headers['content-length'] = str(len(body))

        return uri, method, headers, body

    def set_options(self, transfer, uri):
        config = self.configuration
        curl = transfer.curl
        curl.setopt(pycurl.URL, uri)
        curl.setopt(pycurl.FOLLOWLOCATION, bool(config.follow_redirects))
        curl.setopt(pycurl.MAXREDIRS, config.max_redirects)
        curl.setopt(pycurl.CONNECTTIMEOUT_MS, int(config.connect_timeout * 1000))
        curl.setopt(pycurl.TIMEOUT_MS, int(config.timeout * 1000))
        # Headers go to the header callback, never into the body.
        curl.setopt(pycurl.HEADER, False)
        curl.setopt(pycurl.WRITEDATA, transfer.body)
        curl.setopt(pycurl.HEADERFUNCTION, partial(self.header_callback, transfer))

    def set_method(self, transfer, method, body):
        """Configures `transfer` to use request method `method`, attaching
        `body` if the method takes one."""
        curl = transfer.curl
        if method != 'GET':
            curl.setopt(pycurl.CUSTOMREQUEST, method)

        if method in BODY_METHODS:
            if body:
                curl.setopt(pycurl.POSTFIELDSIZE, len(body))
                curl.setopt(pycurl.POSTFIELDS, body)
        elif method == 'HEAD':
            curl.setopt(pycurl.NOBODY, True)

    def set_headers(self, transfer, headers):
        curl = transfer.curl
        lines = []
        for name, value in headers.items():
            if name == 'accept-encoding':
                # Let the transport negotiate this, so it also decodes the
                # response for us.
                curl.setopt(pycurl.ENCODING, value)
                continue
            lines.append('%s: %s' % (name, value))
        curl.setopt(pycurl.HTTPHEADER, lines)

    def header_callback(self, transfer, data):
        return transfer.header_callback(data)

    def execute(self, transfer):
        """Performs `transfer` by itself, blocking until it's complete.

        Returns the response body, or raises a `TransferError` if the
        transfer failed.

        """
        log.debug('Executing transfer %s', transfer.identity)
        try:
            transfer.curl.perform()
        except pycurl.error as exc:
            code, message = error_args(exc)
            transfer.error = TransferError(code, message, transfer.identity)
            log.error('Transfer %s failed: %s', transfer.identity, transfer.error)
            raise transfer.error
        return transfer.get_content()

    def get_response_code(self, transfer):
        status = transfer.curl.getinfo(pycurl.RESPONSE_CODE)
        if not status:
            raise ResponseError('Empty response status code for transfer %s (not executed?)'
                % transfer.identity)
        return int(status)

    def get_response(self, transfer, content):
        """Assembles the result of completed transfer `transfer` into an
        ``(httplib2.Response, content)`` pair, like `httplib2.Http.request()`
        returns.

        Parameter `content` is the response body the transfer buffered. The
        response's `locations` attribute maps each redirect hop to the URL
        visited, starting at 0 for the requested URL.

        If the transfer failed, its `TransferError` is raised. If no response
        can be assembled, a `ResponseError` is raised.

        """
        response = None
        try:
            if transfer.error is not None:
                raise transfer.error
            status = self.get_response_code(transfer)
            if content is None:
                raise ResponseError('No response content buffered for transfer %s'
                    % transfer.identity)
            transfer.settle(transfer.curl.getinfo(pycurl.EFFECTIVE_URL))

            info = transfer.response_headers()
            info['status'] = str(status)
            response = httplib2.Response(info)
            response.reason = responses.get(status, '')
            response.locations = dict(transfer.locations)
            return response, content
        except (TransferError, ResponseError) as exc:
            log.error('Transfer %s: %s', transfer.identity, exc)
            raise
        finally:
            if self.configuration.debug:
                self.handle_debug_after(transfer, response, content)

    def handle_debug_before(self, transfer, method, uri, headers, body):
        curl = transfer.curl
        curl.setopt(pycurl.VERBOSE, True)
        curl.setopt(pycurl.DEBUGFUNCTION, transfer.debug_callback)

        transfer_log.debug('%s: request:\n%s %s\n%s\n\n%s', transfer.identity,
            method, uri,
            '\n'.join([
                '%s: %s' % (k, v) for k, v in headers.items()
            ]), body.decode('utf-8', 'replace'))

    def handle_debug_after(self, transfer, response, content):
        if transfer.closed:
            return
        identity = transfer.identity
        curl = transfer.curl

        info = {}
        for name, option in DEBUG_INFO:
            info[name] = curl.getinfo(option)
        transfer_log.debug('%s: info: %r', identity, info)

        output = transfer.get_debug_output()
        if output is not None:
            transfer_log.debug('%s: verbose output:\n%s', identity, output)
            transfer.debug.close()

        transfer_log.debug('%s: locations: %r', identity, transfer.locations)

        if response is not None:
            transfer_log.debug('%s: response:\n%s\n\n%s', identity,
                '\n'.join([
                    '%s: %s' % (k, v) for k, v in response.items()
                ]), content.decode('utf-8', 'replace'))

    def release(self, transfer):
        """Closes `transfer`, releasing its native handle."""
        self.transfers.pop(transfer.identity, None)
        transfer.close()

    def reset(self):
        """Releases every transfer this service still holds."""
        for transfer in list(self.transfers.values()):
            transfer.close()
        self.transfers = {}
        return True
