"""Queue storage backends: the common adapter interface, in-memory queues and Redis queues."""