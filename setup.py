#!/usr/bin/env python3

import setuptools

long_description = '''childproc - launching and talking to child processes

Start processes with arbitrary stdio layouts, stream or collect their
output, exchange messages (and sockets) with Python children over an IPC
channel, and get told exactly once how each process ended.
'''

setuptools.setup(
    name='childproc',
    version='0.1.0',
    description='childproc - child processes with pipes, timeouts and IPC',
    long_description=long_description,
    long_description_content_type='text/plain',
    packages=setuptools.find_packages(include=['childproc', 'childproc.*']),
    python_requires='>=3.10',
    install_requires=['funcpipes'],
    extras_require={'test': ['pytest']},
)
