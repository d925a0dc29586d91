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

Exceptions raised by the `multihttp` transfer engine.

Every failure surfaces as a `ClientError`. Failures of a single transfer are
captured while the parallel transfers run and are only raised when that
transfer's response is retrieved, so one bad host can't abort its siblings.

"""


class ClientError(Exception):
    """Base class of all the errors raised by `multihttp`."""
    pass


class NotInitialized(ClientError):
    """An exception raised when an operation is attempted before the
    transfers it needs have been registered or executed."""
    pass


class InvalidRequest(ClientError):
    """An exception raised when request info can't be made into a transfer."""
    pass


class HandleNotFound(ClientError):
    """An exception raised when a response is requested for a handle
    identity that was never registered, or was already retrieved."""
    def __init__(self, identity):
        self.identity = identity
        super(HandleNotFound, self).__init__(
            'Handle not found: %r' % (identity,)
        )


class TransferError(ClientError):
    """An exception raised when an individual transfer failed.

    `code` is the transport's native (``CURLE_*``) error code, and `message`
    its description of the failure.

    """
    def __init__(self, code, message, identity=None):
        self.code = code
        self.message = message
        self.identity = identity
        super(TransferError, self).__init__(
            'Transfer failed with error %d: %s' % (self.code, self.message)
        )


class BatchError(ClientError):
    """An exception raised when the multiplexing transport itself fails,
    independently of any one transfer (``CURLM_*`` codes). A `BatchError`
    aborts the whole batch."""
    def __init__(self, code, message):
        self.code = code
        self.message = message
        super(BatchError, self).__init__(
            'Batch failed with error %d: %s' % (self.code, self.message)
        )


class MalformedTransportInfo(ClientError):
    """An exception raised when the transport reports a completed transfer
    without the fields needed to attribute its outcome."""
    pass


class ResponseError(ClientError):
    """An exception raised when a completed transfer can't be assembled into
    a response."""
    pass
