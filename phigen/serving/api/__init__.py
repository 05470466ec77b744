# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Request, response and fragment types shared by the engine and CLI."""
