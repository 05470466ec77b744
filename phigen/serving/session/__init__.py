# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""The generation loop state machine."""
