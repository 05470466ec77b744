# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Producer/consumer bridge that delivers generated fragments."""
