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

The multi client runs any number of HTTP transfers in parallel over one
shared `pycurl.CurlMulti` transport.

Register each request with `register()`, keeping the identity it returns.
Once everything is registered, `execute_sessions()` drives all the transfers
to completion together. Then collect each response with `get_response()`, or
all of them, in the order they were registered, with `iterate_responses()`:

>>> with MultiClient() as multi:
...     moose = multi.register({'uri': 'http://example.com/moose'})
...     fred = multi.register({'uri': 'http://example.com/fred'})
...     multi.execute_sessions()
...     response, content = multi.get_response(fred)

A transfer that fails doesn't stop the others. Its error is kept until its
response is asked for, and raised then.

"""

import logging
import time

import pycurl

from multihttp.errors import (BatchError, ClientError, HandleNotFound,
    MalformedTransportInfo, NotInitialized, TransferError)
from multihttp.service import CurlService, error_args

log = logging.getLogger(__name__)

# Status codes of CurlMulti.perform() that don't indicate a failure.
MULTI_OK = (pycurl.E_MULTI_OK, pycurl.E_CALL_MULTI_PERFORM)

# Seconds to sleep when the transport has no sockets to wait on.
IDLE_WAIT = 0.1


class MultiClient(object):

    """A batch of HTTP transfers performed in parallel."""

    def __init__(self, service=None, multi_factory=pycurl.CurlMulti):
        """Configures the `MultiClient` to create its transfers with the
        given `multihttp.service.CurlService`, or a default one.

        Parameter `multi_factory` is the callable used to create the shared
        transport the first time a transfer is registered.

        """
        if service is None:
            service = CurlService()
        self.service = service
        self.multi_factory = multi_factory
        self._clear()

    def _clear(self):
        # Registered transfers not yet retrieved, by identity, in
        # registration order.
        self.transfers = {}
        # Errors of individual transfers, by identity, until retrieved.
        self.errors = {}
        self.multi = None
        self.executed = False
        self.status = pycurl.E_MULTI_OK

    def __len__(self):
        """Returns the number of transfers not yet retrieved."""
        return len(self.transfers)

    def __contains__(self, identity):
        return identity in self.transfers

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.reset()

    def register(self, reqinfo):
        """Adds a transfer for the given request to the batch.

        Parameter `reqinfo` is a mapping of the arguments of an
        `httplib2.Http.request()` call (``uri``, and optionally ``method``,
        ``headers`` and ``body``).

        Returns the identity of the new transfer, which `get_response()`
        needs to return its response.

        """
        if self.multi is None:
            self.multi = self.multi_factory()
            log.debug('Created multi transport')

        transfer = self.service.create_handle(reqinfo)
        try:
            self.multi.add_handle(transfer.curl)
        except pycurl.error as exc:
            self.service.release(transfer)
            raise BatchError(*error_args(exc))
        self.transfers[transfer.identity] = transfer
        # New work needs executing before any response is retrieved.
        self.executed = False
        log.debug('Registered transfer %s', transfer.identity)
        return transfer.identity

    def _perform(self):
        try:
            status, running = self.multi.perform()
        except pycurl.error as exc:
            code, message = error_args(exc)
            log.error('Multi transport failed with error %d: %s', code, message)
            raise BatchError(code, message)
        self.status = status
        return status, running

    def _check_status(self, status):
        if status not in MULTI_OK:
            log.error('Multi transport returned status %d', status)
            raise BatchError(status, 'Multi transport returned status %d' % status)

    def _capture_error(self, info):
        """Keeps the error in completion notice `info` for raising when its
        transfer's response is retrieved."""
        try:
            curl, code, message = info
        except (TypeError, ValueError):
            raise MalformedTransportInfo('Could not read failed transfer info %r' % (info,))
        if not isinstance(code, int):
            raise MalformedTransportInfo('Failed transfer info %r has no error code' % (info,))
        if code == pycurl.E_OK:
            log.debug('No error for transfer in %r', info)
            return False

        identity = self.service.get_handle_identifier(curl)
        self.errors[identity] = TransferError(code, message, identity)
        log.debug('Transfer %s failed with error %d: %s', identity, code, message)
        return True

    def _wait(self):
        """Blocks until there's activity on any transfer, or until the
        transport wants to be performed again, whichever comes first.

        The wait never exceeds the configured select timeout. When the
        transport has no sockets to watch yet (while resolving names, for
        one), it sleeps briefly instead, as `select()` would return at once.

        """
        wait = self.service.configuration.select_timeout
        timeout = self.multi.timeout()
        if timeout >= 0:
            wait = min(timeout / 1000.0, wait)
        if wait <= 0:
            return

        read, write, exc = self.multi.fdset()
        if not (read or write or exc):
            time.sleep(min(wait, IDLE_WAIT))
            return
        self.multi.select(wait)

    def _drain(self):
        """Reads every completion notice the transport has queued.

        Failed transfers' errors are kept rather than raised, since any other
        transfers are still running.

        """
        while True:
            try:
                queued, succeeded, failed = self.multi.info_read()
            except (TypeError, ValueError):
                raise MalformedTransportInfo('Could not read transfer info')
            for curl in succeeded:
                log.debug('Transfer %s completed',
                    self.service.get_handle_identifier(curl))
            for info in failed:
                self._capture_error(info)
            if not queued:
                break

    def execute_sessions(self):
        """Performs all the registered transfers in parallel, returning once
        every one of them is complete.

        Errors in individual transfers are raised by `get_response()` later.
        If the shared transport itself fails, a `BatchError` is raised
        immediately. If there's nothing registered to perform, a
        `NotInitialized` is raised.

        """
        if self.multi is None or not self.transfers:
            log.error('No transfers registered to execute')
            raise NotInitialized('No transfers registered to execute')

        log.debug('Executing %d transfers', len(self.transfers))
        while True:
            status, running = self._perform()
            self._check_status(status)

            if running > 0:
                self._wait()

            # Transfers complete at different times, so look for failures on
            # every pass.
            self._drain()

            log.debug('%d transfers still running', running)
            if running <= 0:
                break

        self._check_status(self.status)
        self.executed = True
        return True

    def get_response(self, identity):
        """Returns the ``(httplib2.Response, content)`` pair for the
        transfer with identity `identity`, removing it from the batch.

        If the batch hasn't been executed, a `NotInitialized` is raised. If
        there's no such transfer in the batch (including when its response
        was already retrieved), a `HandleNotFound` is raised. If the transfer
        failed, its `multihttp.errors.TransferError` is raised; the transfer
        is removed all the same.

        """
        if self.multi is None or not self.executed:
            log.error('Batch not executed, no response for %s', identity)
            raise NotInitialized('Batch not executed')
        try:
            transfer = self.transfers.pop(identity)
        except KeyError:
            log.error('Handle not found: %r', identity)
            raise HandleNotFound(identity)

        try:
            error = self.errors.pop(identity, None)
            if error is not None:
                log.error('Transfer %s failed during execution, raising', identity)
                transfer.error = error
            return self.service.get_response(transfer, transfer.get_content())
        finally:
            try:
                self.multi.remove_handle(transfer.curl)
            except pycurl.error as exc:
                log.warning('Could not remove transfer %s from multi transport: %s',
                    identity, exc)
            self.service.release(transfer)
            log.debug('Removed transfer %s', identity)

    def iterate_responses(self):
        """Yields the ``(httplib2.Response, content)`` pair of each transfer
        left in the batch, in the order they were registered.

        Each response is retrieved only as it's asked for, as with
        `get_response()`. If a transfer failed, its error is raised and the
        iteration ends; iterate again to continue with the transfers after
        it.

        """
        while self.transfers:
            identity = next(iter(self.transfers))
            yield self.get_response(identity)

    def reset(self):
        """Discards every transfer in the batch and the shared transport,
        leaving the `MultiClient` ready for a new batch.

        Only this batch's transfers are released; others created by a shared
        service are left alone.

        """
        log.debug('Resetting multi client')
        for transfer in list(self.transfers.values()):
            if self.multi is not None:
                try:
                    self.multi.remove_handle(transfer.curl)
                except pycurl.error as exc:
                    log.warning('Could not remove transfer %s from multi transport: %s',
                        transfer.identity, exc)
            self.service.release(transfer)
        if self.multi is not None:
            self.multi.close()
        self._clear()
        return True


def main(argv):
    """Fetches the URLs in `argv` in parallel, printing a line about each."""
    logging.basicConfig(level=logging.WARNING)
    if not argv:
        print('usage: python -m multihttp URL [URL ...]')
        return 2

    failed = 0
    with MultiClient() as multi:
        identities = [(url, multi.register({'uri': url})) for url in argv]
        multi.execute_sessions()
        for url, identity in identities:
            try:
                response, content = multi.get_response(identity)
            except ClientError as exc:
                failed += 1
                print('%s ERROR %s' % (url, exc))
            else:
                print('%s %d %s (%d bytes)' % (url, response.status,
                    response.reason, len(content)))
    return 1 if failed else 0
