# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Stop conditions: stop tokens, stop strings, max length."""
