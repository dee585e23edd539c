"""Inter-node networking: header-byte dialing and multiplexing, transport and interface reporting."""