"""
Algorithms package for the Resource Control Simulator.
Contains the multi-level CPU scheduler with its selection policies, and
Banker's-algorithm avoidance and deadlock detection.
"""
