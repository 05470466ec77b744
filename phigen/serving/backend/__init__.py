# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Model forward pass behind a serialized compute boundary."""
